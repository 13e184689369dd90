from django.contrib import admin
from .models import Order, OrderItem, Transaction

class OrderItemInline(admin.TabularInline):
    model = OrderItem
    extra = 0
    readonly_fields = ('artwork', 'quantity', 'price')

class TransactionInline(admin.StackedInline):
    model = Transaction
    extra = 0
    can_delete = False
    readonly_fields = ('amount', 'status', 'metadata', 'created_at', 'updated_at')

@admin.register(Order)
class OrderAdmin(admin.ModelAdmin):
    list_display = ('id', 'buyer_email', 'user', 'status', 'total_amount', 'created_at', 'paid_at')
    list_filter = ('status', 'created_at', 'paid_at')
    search_fields = ('id', 'buyer_email', 'user__username', 'user__email')
    readonly_fields = ('total_amount', 'paid_at', 'cancelled_at', 'created_at', 'updated_at')
    inlines = [OrderItemInline, TransactionInline]

@admin.register(Transaction)
class TransactionAdmin(admin.ModelAdmin):
    list_display = ('order', 'amount', 'status', 'created_at', 'updated_at')
    list_filter = ('status', 'created_at')
    search_fields = ('order__id', 'order__buyer_email')
    readonly_fields = ('order', 'amount', 'metadata', 'created_at', 'updated_at')
