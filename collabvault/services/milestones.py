"""Collaboration milestone payloads.

Stored milestone JSON comes in two shapes: a mapping of name to status,
or a list of milestone records. Both are parsed into a tagged variant and
immediately normalized to ``list[Milestone]``.
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Union

from collabvault.errors import InvalidRequest

RELEASED = "Released"
PENDING = "Pending"


@dataclass(frozen=True)
class Milestone:
    name: str
    status: str
    amount: Decimal
    date: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class ObjectForm:
    statuses: dict[str, str]


@dataclass(frozen=True)
class ListForm:
    items: list[dict[str, Any]]


Milestones = Union[ObjectForm, ListForm]


def _to_decimal(value: Any) -> Decimal:
    if value in (None, ""):
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except ArithmeticError as exc:
        raise InvalidRequest(f"Invalid milestone amount: {value!r}") from exc


def parse(raw: Any) -> Milestones | None:
    if raw is None:
        return None
    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except ValueError as exc:
            raise InvalidRequest("Milestones payload is not valid JSON") from exc
    if isinstance(raw, dict):
        return ObjectForm(statuses={str(k): str(v) for k, v in raw.items()})
    if isinstance(raw, list):
        return ListForm(items=[item for item in raw if isinstance(item, dict)])
    raise InvalidRequest("Milestones must be an object or a list")


def normalize(milestones: Milestones | None, agreed_price: Any = None) -> list[Milestone]:
    if milestones is None:
        return []

    if isinstance(milestones, ObjectForm):
        entries = list(milestones.statuses.items())
        price = _to_decimal(agreed_price)
        per_milestone = price / max(len(entries), 1)
        amount = per_milestone.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
        return [
            Milestone(
                name=name,
                status=RELEASED if status.lower() == "completed" else PENDING,
                amount=amount,
            )
            for name, status in entries
        ]

    result = []
    for item in milestones.items:
        status = str(item.get("status") or "").lower()
        result.append(
            Milestone(
                name=item.get("name") or "Milestone",
                status=RELEASED if status in ("released", "completed") else PENDING,
                amount=_to_decimal(item.get("amount")),
                date=item.get("date"),
            )
        )
    return result


def load(raw: Any, agreed_price: Any = None) -> list[Milestone]:
    return normalize(parse(raw), agreed_price)
