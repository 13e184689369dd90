import logging

from django.http import JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_GET, require_POST

from core.http import BadJSON, api_login_required, api_staff_required, json_error, read_json
from .forms import (
    DispatchPayoutForm, InitializePaymentForm, VerifyPaymentForm, WithdrawalRequestForm, WithdrawalStatusForm,
)
from .providers import PaymentProviderError, get_provider
from .services import initialize_payment, verify_payment
from .webhooks import handle_provider_webhook
from .withdrawals import (
    WithdrawalError, dispatch_payout, get_withdrawal_statistics, request_withdrawal, update_withdrawal_status,
)

logger = logging.getLogger('payments')


def _bound_form(form_class, request):
    return form_class(read_json(request))


def _form_errors(form):
    return JsonResponse({'success': False, 'errors': form.errors}, status=400)


def _withdrawal_payload(w):
    return {
        'id': w.pk,
        'userId': w.user_id,
        'orderItemId': w.order_item_id,
        'amount': w.amount,
        'status': w.status,
        'payoutAccount': w.payout_account,
        'payoutBatchId': w.payout_batch_id or None,
        'metadata': w.metadata,
        'createdAt': w.created_at,
        'updatedAt': w.updated_at,
    }


@csrf_exempt
@require_POST
def initialize(request):
    try:
        form = _bound_form(InitializePaymentForm, request)
    except BadJSON as e:
        return json_error(str(e))
    if not form.is_valid():
        return _form_errors(form)

    data = dict(form.cleaned_data)
    if data.get('orderId'):
        data['orderId'] = str(data['orderId'])
    logger.info("Initialize payment request: %s %s", data['provider'], data['txRef'])
    try:
        result = initialize_payment(data)
    except PaymentProviderError as e:
        return json_error(str(e), provider=e.provider)
    return JsonResponse({'success': True, 'message': 'Payment initialized successfully', 'data': result})


@csrf_exempt
@require_POST
def verify(request):
    try:
        form = _bound_form(VerifyPaymentForm, request)
    except BadJSON as e:
        return json_error(str(e))
    if not form.is_valid():
        return _form_errors(form)

    logger.info("Verify payment request: %s", form.cleaned_data['txRef'])
    try:
        result = verify_payment(form.cleaned_data)
    except PaymentProviderError as e:
        return json_error(str(e), provider=e.provider)
    ok = result['status'] == 'success'
    return JsonResponse({
        'success': ok,
        'message': 'Payment verified successfully' if ok else 'Payment not completed',
        'data': result,
    })


def _webhook(provider_name, request):
    result = handle_provider_webhook(provider_name, request.body, request.headers)
    # the provider only needs an acknowledgement
    return JsonResponse(result, status=200)


@csrf_exempt
@require_POST
def paypal_webhook(request):
    return _webhook('paypal', request)


@csrf_exempt
@require_POST
def chapa_webhook(request):
    return _webhook('chapa', request)


@require_GET
def chapa_callback(request):
    trx_ref = request.GET.get('trx_ref') or request.GET.get('tx_ref')
    status = request.GET.get('status')
    logger.info("Chapa callback: %s - %s", trx_ref, status)
    return JsonResponse({'success': True, 'message': 'Callback received', 'data': {'trxRef': trx_ref, 'status': status}})


@require_GET
def paypal_callback(request):
    token = request.GET.get('token')
    logger.info("PayPal callback: %s", token)
    return JsonResponse({'success': True, 'message': 'Callback received', 'data': {'token': token}})


@csrf_exempt
@require_POST
@api_staff_required
def paypal_capture(request, paypal_order_id):
    logger.info("Capture PayPal payment: %s", paypal_order_id)
    try:
        data = get_provider('paypal').capture_payment(paypal_order_id)
    except PaymentProviderError as e:
        return json_error(str(e), provider=e.provider)
    return JsonResponse({'success': True, 'message': 'Payment captured', 'data': data})


@csrf_exempt
@require_POST
@api_login_required
def withdrawal_request(request):
    if not request.user.is_artist:
        return json_error("Only artists can request withdrawals", status=403)
    try:
        form = _bound_form(WithdrawalRequestForm, request)
    except BadJSON as e:
        return json_error(str(e))
    if not form.is_valid():
        return _form_errors(form)
    try:
        withdrawal = request_withdrawal(request.user, form.cleaned_data['amount'],
                                        form.cleaned_data.get('payoutAccount') or None)
    except WithdrawalError as e:
        return json_error(str(e), status=e.status_code)
    return JsonResponse({'success': True, 'message': 'Withdrawal requested', 'data': _withdrawal_payload(withdrawal)},
                        status=201)


@csrf_exempt
@require_POST
@api_staff_required
def withdrawal_dispatch(request, withdrawal_id):
    try:
        form = _bound_form(DispatchPayoutForm, request)
    except BadJSON as e:
        return json_error(str(e))
    if not form.is_valid():
        return _form_errors(form)
    try:
        withdrawal = dispatch_payout(withdrawal_id, provider=form.cleaned_data.get('provider') or None)
    except WithdrawalError as e:
        return json_error(str(e), status=e.status_code)
    except PaymentProviderError as e:
        return json_error(str(e), provider=e.provider)
    ok = withdrawal.status != withdrawal.Status.FAILED
    return JsonResponse({
        'success': ok,
        'message': 'Payout dispatched' if ok else withdrawal.meta('failureReason', 'Payout failed'),
        'data': _withdrawal_payload(withdrawal),
    })


@csrf_exempt
@require_POST
@api_staff_required
def withdrawal_status(request, withdrawal_id):
    try:
        form = _bound_form(WithdrawalStatusForm, request)
    except BadJSON as e:
        return json_error(str(e))
    if not form.is_valid():
        return _form_errors(form)
    try:
        withdrawal = update_withdrawal_status(withdrawal_id, form.cleaned_data['status'],
                                              form.cleaned_data.get('reason') or None)
    except WithdrawalError as e:
        return json_error(str(e), status=e.status_code)
    return JsonResponse({'success': True, 'message': 'Withdrawal updated', 'data': _withdrawal_payload(withdrawal)})


@require_GET
@api_staff_required
def withdrawal_statistics(request):
    return JsonResponse({'success': True, 'data': get_withdrawal_statistics()})
