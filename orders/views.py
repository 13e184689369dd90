from django.http import JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_GET, require_POST

from core.http import BadJSON, api_login_required, json_error, read_json
from .exceptions import OrderError
from .forms import CompleteOrderForm, CreateOrderForm
from .services import complete_order, create_order, get_order, get_user_orders


def order_payload(order):
    txn = getattr(order, 'transaction', None)
    return {
        'id': str(order.pk),
        'buyerEmail': order.buyer_email,
        'userId': order.user_id,
        'totalAmount': order.total_amount,
        'status': order.status,
        'createdAt': order.created_at,
        'paidAt': order.paid_at,
        'cancelledAt': order.cancelled_at,
        'items': [
            {
                'id': item.pk,
                'artworkId': str(item.artwork_id),
                'artworkTitle': item.artwork.title,
                'artistName': item.artwork.artist_name,
                'quantity': item.quantity,
                'price': item.price,
            }
            for item in order.items.all()
        ],
        'transaction': {
            'status': txn.status,
            'amount': txn.amount,
            'metadata': txn.metadata,
        } if txn is not None else None,
    }


def _can_see(user, order):
    return user.is_staff or user.is_superuser or (order.user_id is not None and order.user_id == user.id)


@csrf_exempt
@require_POST
@api_login_required
def create(request):
    try:
        form = CreateOrderForm(read_json(request))
    except BadJSON as e:
        return json_error(str(e))
    if not form.is_valid():
        return JsonResponse({'success': False, 'errors': form.errors}, status=400)

    data = form.cleaned_data
    try:
        result = create_order(
            buyer_user_id=request.user.id,
            items=data['items'],
            shipping_address=data['shippingAddress'],
            payment_method=data['paymentMethod'],
            buyer_email=data.get('buyerEmail') or request.user.email,
        )
    except OrderError as e:
        extra = {}
        if hasattr(e, 'artwork_ids'):
            extra['artworkIds'] = e.artwork_ids
        if hasattr(e, 'titles'):
            extra['titles'] = e.titles
        return json_error(str(e), status=e.status_code, **extra)
    return JsonResponse({'success': True, 'message': 'Order created successfully', 'data': result}, status=201)


@csrf_exempt
@require_POST
@api_login_required
def complete(request, order_id):
    try:
        form = CompleteOrderForm(read_json(request))
    except BadJSON as e:
        return json_error(str(e))
    if not form.is_valid():
        return JsonResponse({'success': False, 'errors': form.errors}, status=400)

    try:
        order = get_order(order_id)
        if not _can_see(request.user, order):
            return json_error("This order belongs to another user", status=403)
        is_admin = request.user.is_staff or request.user.is_superuser
        order = complete_order(
            order.pk,
            form.cleaned_data['txRef'],
            form.cleaned_data['paymentProvider'],
            resolved_user_id=None if is_admin else request.user.id,
            completedBy=request.user.id,
        )
    except OrderError as e:
        return json_error(str(e), status=e.status_code)
    return JsonResponse({'success': True, 'message': 'Order completed', 'data': order_payload(order)})


@require_GET
@api_login_required
def my_orders(request):
    orders = get_user_orders(request.user.id)
    return JsonResponse({'success': True, 'data': [order_payload(o) for o in orders]})


@require_GET
@api_login_required
def detail(request, order_id):
    try:
        order = get_order(order_id)
    except OrderError as e:
        return json_error(str(e), status=e.status_code)
    if not _can_see(request.user, order):
        # not revealing that someone else's order exists
        return json_error("Order not found", status=404)
    return JsonResponse({'success': True, 'data': order_payload(order)})
