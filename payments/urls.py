from django.urls import path
from . import views

app_name = 'payments'

urlpatterns = [
    # checkout
    path('initialize', views.initialize, name='initialize'),
    path('verify', views.verify, name='verify'),

    # provider redirects and webhooks
    path('chapa/callback', views.chapa_callback, name='chapa_callback'),
    path('chapa/webhook', views.chapa_webhook, name='chapa_webhook'),
    path('paypal/callback', views.paypal_callback, name='paypal_callback'),
    path('paypal/webhook', views.paypal_webhook, name='paypal_webhook'),
    path('paypal/capture/<str:paypal_order_id>', views.paypal_capture, name='paypal_capture'),

    # artist payouts
    path('withdrawals', views.withdrawal_request, name='withdrawal_request'),
    path('withdrawals/statistics', views.withdrawal_statistics, name='withdrawal_statistics'),
    path('withdrawals/<int:withdrawal_id>/dispatch', views.withdrawal_dispatch, name='withdrawal_dispatch'),
    path('withdrawals/<int:withdrawal_id>/status', views.withdrawal_status, name='withdrawal_status'),
]
