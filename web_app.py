"""
Price-Drop Buy Orders - Web Application

Flask JSON API for price updates, storefront and payment webhooks,
merchant offers and buy order intake.
"""
from flask import Flask, request, jsonify, current_app
from functools import wraps
from dataclasses import dataclass
from typing import Callable, Optional
from datetime import datetime
from werkzeug.utils import secure_filename
import logging

from adapters.base import DiscountAdapter, NotificationSink, PaymentAdapter
from adapters.discounts import build_discount_adapter
from adapters.payments import build_payment_adapter
from config.settings import Settings
from core.exceptions import (
    CollaboratorUnavailableError,
    InputError,
    OrderNotCancellableError,
    OrderNotFoundError,
    OrderStoreError,
    ProductNotFoundError,
)
from core.models import OrderStatus, PaymentStatus, Platform
from orchestrator.expiry import ExpirySweeper
from orchestrator.fulfillment import FulfillmentMatcher
from orchestrator.intake import BuyOrderIntake
from orchestrator.price_change import PriceChangeIngestor
from services.database import connect, init_db
from services.notifications import SqliteNotificationSink
from services.order_store import SqliteOrderStore
from services.price_import import import_prices, read_price_sheet
from services.product_store import SqliteProductStore
from validator.buy_order import BuyOrderIntent
from validator.price_events import normalize_event
from pydantic import ValidationError

logger = logging.getLogger(__name__)

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

SHOPIFY_PRICE_TOPICS = {'products/update', 'products/create'}
WOOCOMMERCE_PRICE_TOPICS = {'product.updated', 'product.created'}
WOOCOMMERCE_DELETE_TOPIC = 'product.deleted'
STRIPE_PAYMENT_EVENTS = {
    'payment_intent.canceled': PaymentStatus.RELEASED,
    'payment_intent.payment_failed': PaymentStatus.FAILED,
}


def configure_logging(level: str = 'INFO') -> None:
    """Console logging in the same format for the API and the CLI."""
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format=LOG_FORMAT,
        handlers=[logging.StreamHandler()],
    )


@dataclass
class Services:
    """Everything a request handler needs, wired once per app."""
    db_path: str
    order_store: SqliteOrderStore
    product_store: SqliteProductStore
    notification_sink: NotificationSink
    matcher: FulfillmentMatcher
    ingestor: PriceChangeIngestor
    intake: BuyOrderIntake
    sweeper: ExpirySweeper


def build_services(
    settings: Settings,
    payment_adapter: Optional[PaymentAdapter] = None,
    discount_adapter: Optional[DiscountAdapter] = None,
    notification_sink: Optional[NotificationSink] = None,
    clock: Optional[Callable[[], datetime]] = None,
) -> Services:
    """Wire stores, adapters and orchestrators from settings. Passed-in collaborators win."""
    db_path = init_db(settings.DATABASE_PATH)
    order_store = SqliteOrderStore(db_path)
    product_store = SqliteProductStore(db_path)
    payment_adapter = payment_adapter or build_payment_adapter(settings)
    discount_adapter = discount_adapter or build_discount_adapter(settings, product_store)
    notification_sink = notification_sink or SqliteNotificationSink(db_path)

    matcher = FulfillmentMatcher(
        order_store=order_store,
        product_store=product_store,
        payment_adapter=payment_adapter,
        discount_adapter=discount_adapter,
        notification_sink=notification_sink,
        clock=clock,
    )
    return Services(
        db_path=db_path,
        order_store=order_store,
        product_store=product_store,
        notification_sink=notification_sink,
        matcher=matcher,
        ingestor=PriceChangeIngestor(
            product_store,
            matcher,
            default_merchant_id=settings.DEFAULT_MERCHANT_ID,
            default_currency=settings.DEFAULT_CURRENCY,
        ),
        intake=BuyOrderIntake(
            order_store,
            product_store,
            payment_adapter,
            notification_sink,
            expiry_days=settings.DEFAULT_ORDER_EXPIRY_DAYS,
            clock=clock,
        ),
        sweeper=ExpirySweeper(order_store, payment_adapter, notification_sink),
    )


def _services() -> Services:
    return current_app.extensions['buy_orders']


def _error(message: str, status: int):
    return jsonify({'success': False, 'error': message}), status


def _json_body():
    body = request.get_json(silent=True)
    if not isinstance(body, dict):
        raise InputError('Request body must be a JSON object')
    return body


def api_errors(f):
    """Map domain errors raised by a handler to JSON error responses."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        try:
            return f(*args, **kwargs)
        except (ProductNotFoundError, OrderNotFoundError) as e:
            return _error(str(e), 404)
        except OrderNotCancellableError as e:
            return _error(str(e), 409)
        except InputError as e:
            return _error(str(e), 400)
        except ValidationError as e:
            err = e.errors()[0]
            return _error(f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}", 400)
        except (CollaboratorUnavailableError, OrderStoreError) as e:
            logger.error(f'{request.path}: collaborator unavailable: {e}')
            return _error('Service temporarily unavailable', 503)
    return decorated_function


def create_app(
    settings: Optional[Settings] = None,
    services: Optional[Services] = None,
) -> Flask:
    """
    Application factory.

    Args:
        settings: Configuration (default: environment-backed Settings())
        services: Pre-wired collaborators; tests pass their own
    """
    settings = settings or Settings()
    app = Flask(__name__)
    app.secret_key = settings.FLASK_SECRET_KEY
    app.config['MAX_CONTENT_LENGTH'] = 16 * 1024 * 1024  # 16MB price sheets
    app.extensions['buy_orders'] = services or build_services(settings)

    @app.route('/api/health', methods=['GET'])
    def health():
        svc = _services()
        try:
            with connect(svc.db_path) as conn:
                conn.execute('SELECT 1')
        except OrderStoreError as e:
            logger.error(f'Health check failed: {e}')
            return jsonify({'status': 'unhealthy', 'database': 'unreachable'}), 503
        return jsonify({'status': 'healthy', 'database': 'ok', 'env': settings.ENV})

    @app.route('/api/products/update-price', methods=['POST'])
    @api_errors
    def update_price():
        event = normalize_event('manual', _json_body())
        result = _services().ingestor.ingest(event)
        return jsonify({'success': True, **result.to_dict()})

    @app.route('/api/products/import-prices', methods=['POST'])
    @api_errors
    def import_price_sheet():
        if 'file' not in request.files:
            raise InputError('No file uploaded.')
        file = request.files['file']
        if file.filename == '':
            raise InputError('No file selected.')
        df = read_price_sheet(file, secure_filename(file.filename))
        summary = import_prices(df, _services().ingestor)
        return jsonify({'success': True, **summary})

    @app.route('/api/products/<product_id>/offers', methods=['POST'])
    @api_errors
    def push_offer(product_id):
        body = _json_body()
        if 'offerPrice' not in body:
            raise InputError('offerPrice is required')
        order_ids = body.get('orderIds')
        if order_ids is not None and not isinstance(order_ids, list):
            raise InputError('orderIds must be a list')
        report = _services().matcher.push_offer(product_id, body['offerPrice'], order_ids)
        return jsonify({'success': True, **report.to_dict()})

    @app.route('/api/buy-orders', methods=['POST'])
    @api_errors
    def create_buy_order():
        intent = BuyOrderIntent(**_json_body())
        order = _services().intake.create(intent)
        return jsonify({'success': True, 'order': order.to_dict()}), 201

    @app.route('/api/buy-orders/<order_id>', methods=['GET'])
    @api_errors
    def get_buy_order(order_id):
        order = _services().order_store.get_order(order_id)
        if order is None:
            raise OrderNotFoundError(f"Buy order '{order_id}' not found")
        return jsonify({'success': True, 'order': order.to_dict()})

    @app.route('/api/buy-orders/<order_id>/cancel', methods=['POST'])
    @api_errors
    def cancel_buy_order(order_id):
        order = _services().intake.cancel(order_id)
        return jsonify({'success': True, 'order': order.to_dict()})

    # ------------------------------------------------
    # Webhooks (signatures are verified upstream)
    # ------------------------------------------------

    @app.route('/webhooks/shopify', methods=['POST'])
    @api_errors
    def shopify_webhook():
        topic = request.headers.get('X-Shopify-Topic', '')
        if topic not in SHOPIFY_PRICE_TOPICS:
            logger.info(f'Ignoring Shopify topic {topic!r}')
            return jsonify({'success': True, 'status': 'ignored', 'topic': topic})
        result = _services().ingestor.ingest(normalize_event('shopify', _json_body()))
        return jsonify({'success': True, 'status': 'processed', **result.to_dict()})

    @app.route('/webhooks/woocommerce', methods=['POST'])
    @api_errors
    def woocommerce_webhook():
        topic = request.headers.get('X-WC-Webhook-Topic', '')
        if topic == WOOCOMMERCE_DELETE_TOPIC:
            return _woocommerce_product_deleted(_json_body())
        if topic not in WOOCOMMERCE_PRICE_TOPICS:
            # Includes the form-encoded ping WooCommerce sends when a webhook is saved
            logger.info(f'Ignoring WooCommerce topic {topic!r}')
            return jsonify({'success': True, 'status': 'ignored', 'topic': topic})
        result = _services().ingestor.ingest(normalize_event('woocommerce', _json_body()))
        return jsonify({'success': True, 'status': 'processed', **result.to_dict()})

    @app.route('/webhooks/stripe', methods=['POST'])
    @api_errors
    def stripe_webhook():
        event = _json_body()
        event_type = event.get('type', '')
        new_status = STRIPE_PAYMENT_EVENTS.get(event_type)
        if new_status is None:
            return jsonify({'success': True, 'status': 'ignored', 'type': event_type})

        intent_id = (event.get('data') or {}).get('object', {}).get('id')
        if not intent_id:
            raise InputError('data.object.id is required')
        svc = _services()
        order = svc.order_store.find_by_escrow_reference(intent_id)
        if order is None:
            logger.info(f'Stripe {event_type} for unknown PaymentIntent {intent_id}')
            return jsonify({'success': True, 'status': 'ignored', 'type': event_type})

        changed = svc.order_store.set_payment_status(order.id, new_status, expected=PaymentStatus.AUTHORIZED)
        logger.info(f'Stripe {event_type}: order {order.id} payment -> {new_status.value} (changed={changed})')
        return jsonify({
            'success': True,
            'status': 'processed',
            'orderId': order.id,
            'paymentStatus': new_status.value if changed else order.payment_status.value,
        })

    return app


def _woocommerce_product_deleted(payload):
    external_id = payload.get('id')
    if external_id is None:
        raise InputError('id is required')
    svc = _services()
    product = svc.product_store.find_by_external_id(Platform.WOOCOMMERCE, str(external_id))
    if product is None:
        return jsonify({'success': True, 'status': 'ignored', 'reason': 'unknown product'})

    cancelled = []
    for status in (OrderStatus.PENDING, OrderStatus.MONITORING):
        for order in svc.order_store.list_orders(product_id=product.id, status=status):
            try:
                svc.intake.cancel(order.id)
                cancelled.append(order.id)
            except OrderNotCancellableError:
                # Fulfilled or expired since listing
                continue
    svc.product_store.mark_deleted(product.id)
    logger.info(f'WooCommerce product {external_id} deleted: cancelled {len(cancelled)} buy orders')
    return jsonify({'success': True, 'status': 'processed', 'productId': product.id, 'cancelledOrders': cancelled})


if __name__ == '__main__':
    app_settings = Settings()
    configure_logging(app_settings.LOG_LEVEL)
    create_app(app_settings).run(debug=app_settings.DEBUG, host='0.0.0.0', port=5000)
