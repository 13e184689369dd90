from django.contrib import admin
from django.urls import path, include

urlpatterns = [
    path('admin/', admin.site.urls),

    path('orders/', include('orders.urls')),  # order ledger
    path('payment/', include('payments.urls', namespace='payments')),  # checkout, verification, webhooks, payouts
]
