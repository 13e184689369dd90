from .models import CartItem


class CartItemNotFound(LookupError):
    pass


def remove_from_cart(user_id, artwork_id) -> None:
    deleted, _ = CartItem.objects.filter(user_id=user_id, artwork_id=artwork_id).delete()
    if not deleted:
        raise CartItemNotFound(f"Artwork {artwork_id} is not in the cart of user {user_id}")
