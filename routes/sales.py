from flask import Blueprint, request, jsonify
from flask_login import login_required
from datetime import date
import logging

from models import db, Customer, SalesOrder
from routes.analytics_utils import customer_segment, sales_analytics
from routes.decorators import writer_required
from routes.errors import handle_route_error
from routes.order_utils import create_order, update_order, delete_order, advance_status
from routes.utils import get_json_payload, require_fields, new_record_id, parse_date, list_response

logger = logging.getLogger(__name__)

sales_bp = Blueprint('sales', __name__, url_prefix='/sales')

CUSTOMER_FIELDS = ('name', 'type', 'email', 'phone', 'address')


def _customer_payload(customer):
    return customer.to_dict(segment=customer_segment(customer))


# --- Customers ---

@sales_bp.route('/customers', methods=['GET'])
@login_required
def list_customers():
    query = Customer.query
    search = (request.args.get('search') or '').strip()
    if search:
        query = query.filter(Customer.name.ilike(f'%{search}%') | Customer.phone.ilike(f'%{search}%'))
    customer_type = request.args.get('type')
    if customer_type:
        query = query.filter(Customer.type == customer_type)
    return jsonify(list_response(query.order_by(Customer.name), _customer_payload))


@sales_bp.route('/customers/<customer_id>', methods=['GET'])
@login_required
def get_customer(customer_id):
    customer = db.get_or_404(Customer, customer_id)
    data = _customer_payload(customer)
    data['orders'] = [o.to_dict() for o in
                      SalesOrder.query.filter_by(customer_id=customer_id).order_by(SalesOrder.date.desc())]
    return jsonify(data)


@sales_bp.route('/customers', methods=['POST'])
@login_required
@writer_required
def create_customer():
    try:
        payload = get_json_payload()
        require_fields(payload, 'name')
        customer = Customer(
            id=payload.get('id') or new_record_id('cust'),
            name=payload['name'].strip(),
            type=payload.get('type') or 'RETAIL',
            email=payload.get('email'),
            phone=payload.get('phone') or '',
            address=payload.get('address'),
            total_orders=0,
            total_spent=0,
            joined_date=parse_date(payload.get('joined_date'), date.today()),
        )
        db.session.add(customer)
        db.session.commit()
        return jsonify(_customer_payload(customer)), 201
    except Exception as e:
        return handle_route_error(e, 'create customer')


@sales_bp.route('/customers/<customer_id>', methods=['PUT', 'PATCH'])
@login_required
@writer_required
def update_customer(customer_id):
    """Edit contact details. Order statistics are owned by the order workflow and never taken from input."""
    customer = db.get_or_404(Customer, customer_id)
    try:
        payload = get_json_payload()
        for field in CUSTOMER_FIELDS:
            if field in payload and payload[field] is not None:
                setattr(customer, field, payload[field])
        if 'joined_date' in payload:
            customer.joined_date = parse_date(payload['joined_date'], customer.joined_date)
        db.session.commit()
        return jsonify(_customer_payload(customer))
    except Exception as e:
        return handle_route_error(e, 'update customer')


@sales_bp.route('/customers/<customer_id>', methods=['DELETE'])
@login_required
@writer_required
def delete_customer(customer_id):
    customer = db.get_or_404(Customer, customer_id)
    try:
        # orders keep customer_id/customer_name as a weak reference
        db.session.delete(customer)
        db.session.commit()
        return jsonify({'status': 'ok', 'id': customer_id})
    except Exception as e:
        return handle_route_error(e, 'delete customer')


# --- Orders ---

@sales_bp.route('/orders', methods=['GET'])
@login_required
def list_orders():
    query = SalesOrder.query
    status = request.args.get('status')
    if status:
        query = query.filter(SalesOrder.status == status)
    customer_id = request.args.get('customer_id')
    if customer_id:
        query = query.filter(SalesOrder.customer_id == customer_id)
    start = parse_date(request.args.get('start_date'))
    end = parse_date(request.args.get('end_date'))
    if start:
        query = query.filter(SalesOrder.date >= start)
    if end:
        query = query.filter(SalesOrder.date <= end)
    return jsonify(list_response(query.order_by(SalesOrder.date.desc(), SalesOrder.created_at.desc())))


@sales_bp.route('/orders/<order_id>', methods=['GET'])
@login_required
def get_order(order_id):
    return jsonify(db.get_or_404(SalesOrder, order_id).to_dict())


@sales_bp.route('/orders', methods=['POST'])
@login_required
@writer_required
def create_order_route():
    try:
        order = create_order(get_json_payload())
        db.session.commit()
        return jsonify(order.to_dict()), 201
    except Exception as e:
        return handle_route_error(e, 'create order')


@sales_bp.route('/orders/<order_id>', methods=['PUT', 'PATCH'])
@login_required
@writer_required
def update_order_route(order_id):
    order = db.get_or_404(SalesOrder, order_id)
    try:
        update_order(order, get_json_payload())
        db.session.commit()
        return jsonify(order.to_dict())
    except Exception as e:
        return handle_route_error(e, 'update order')


@sales_bp.route('/orders/<order_id>', methods=['DELETE'])
@login_required
@writer_required
def delete_order_route(order_id):
    order = db.get_or_404(SalesOrder, order_id)
    try:
        delete_order(order)
        db.session.commit()
        logger.info("Deleted order %s", order_id)
        return jsonify({'status': 'ok', 'id': order_id})
    except Exception as e:
        return handle_route_error(e, 'delete order')


@sales_bp.route('/orders/<order_id>/advance', methods=['POST'])
@login_required
@writer_required
def advance_order(order_id):
    order = db.get_or_404(SalesOrder, order_id)
    try:
        advance_status(order)
        db.session.commit()
        return jsonify(order.to_dict())
    except Exception as e:
        return handle_route_error(e, 'advance order status')


@sales_bp.route('/analytics', methods=['GET'])
@login_required
def analytics():
    orders = SalesOrder.query.all()
    customers = Customer.query.all()
    data = sales_analytics(orders)
    segments = {}
    for customer in customers:
        label = customer_segment(customer)
        segments[label] = segments.get(label, 0) + 1
    data['segments'] = segments
    data['top_customers'] = [
        _customer_payload(c)
        for c in sorted(customers, key=lambda c: c.total_spent or 0, reverse=True)[:5]
    ]
    return jsonify(data)
