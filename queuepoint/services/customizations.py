from __future__ import annotations

import json
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Union


@dataclass(frozen=True)
class NamedOption:
    name: str
    price: Decimal

    @property
    def label(self) -> str:
        return self.name

    def encode(self) -> str:
        return json.dumps({'name': self.name, 'price': str(self.price)})


@dataclass(frozen=True)
class RawLabel:
    """A customization we could not read as a priced option. Shown as-is, costs nothing."""

    text: str

    @property
    def label(self) -> str:
        return self.text

    @property
    def price(self) -> Decimal:
        return Decimal('0')

    def encode(self) -> str:
        # Always tagged; decoding never reads a label back as a priced option.
        return json.dumps({'label': self.text})


Customization = Union[NamedOption, RawLabel]


def _parse_price(raw) -> Decimal:
    if raw is None or isinstance(raw, bool):
        return Decimal('0')
    try:
        price = Decimal(str(raw))
    except (InvalidOperation, ValueError):
        return Decimal('0')
    if not price.is_finite():
        return Decimal('0')
    return price


def decode_customization(raw) -> Customization:
    if isinstance(raw, dict):
        payload = raw
    else:
        text = '' if raw is None else str(raw)
        if not text.startswith('{'):
            return RawLabel(text)
        try:
            payload = json.loads(text)
        except ValueError:
            return RawLabel(text)
        if not isinstance(payload, dict):
            return RawLabel(text)

    if 'label' in payload and 'name' not in payload:
        label = payload['label']
        return RawLabel(label if isinstance(label, str) else json.dumps(label))

    name = payload.get('name')
    if not isinstance(name, str) or not name.strip():
        return RawLabel(raw if isinstance(raw, str) else json.dumps(payload))
    return NamedOption(name=name, price=_parse_price(payload.get('price')))


def decode_customizations(raw_values) -> list[Customization]:
    return [decode_customization(value) for value in raw_values or []]


def customization_total(values: list[Customization]) -> Decimal:
    return sum((value.price for value in values), Decimal('0'))


def line_total(unit_price: Decimal, quantity: int, values: list[Customization]) -> Decimal:
    return unit_price * quantity + customization_total(values) * quantity
