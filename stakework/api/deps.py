"""Request-scoped access to the injected parameter store and payment rail."""

from __future__ import annotations

from fastapi import Request

from stakework.parameters import ParameterStore
from stakework.services.rails import PaymentRail


def get_parameter_store(request: Request) -> ParameterStore:
    return request.app.state.parameters


def get_payment_rail(request: Request) -> PaymentRail:
    return request.app.state.rail
