# Overview: Builds the per-request service graph from the current session and app extensions.

from __future__ import annotations

from dataclasses import dataclass

from flask import current_app

from .events import get_dispatcher
from .extensions import db
from .repositories import Repositories
from .services.delivery_service import DeliveryService
from .services.gateway import get_gateway
from .services.order_service import OrderService
from .services.payment_service import PaymentService
from .services.stock_service import StockService


@dataclass
class Services:
    repos: Repositories
    stock: StockService
    orders: OrderService
    payments: PaymentService
    deliveries: DeliveryService


def build_services(session, dispatcher, gateway, config) -> Services:
    """Wire the services leaves-first: stock <- orders <- payments/deliveries."""
    repos = Repositories.from_session(session)
    stock = StockService(repos, dispatcher, config)
    orders = OrderService(repos, stock, dispatcher, config)
    return Services(
        repos=repos,
        stock=stock,
        orders=orders,
        payments=PaymentService(repos, orders, gateway, dispatcher, config),
        deliveries=DeliveryService(repos, orders, dispatcher),
    )


def get_services() -> Services:
    return build_services(db.session, get_dispatcher(), get_gateway(), current_app.config)
