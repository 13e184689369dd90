from django.urls import path
from . import views

app_name = 'orders'

urlpatterns = [
    path('create', views.create, name='create'),
    path('my-orders', views.my_orders, name='my_orders'),
    path('<str:order_id>', views.detail, name='detail'),
    path('<str:order_id>/complete', views.complete, name='complete'),
]
