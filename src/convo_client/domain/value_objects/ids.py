from __future__ import annotations

from typing import NewType

ConvoId = NewType("ConvoId", str)
MessageId = NewType("MessageId", str)
Did = NewType("Did", str)
