class OrderError(Exception):
    status_code = 400
    default_message = "Order error"

    def __init__(self, message=None):
        super().__init__(message or self.default_message)


class OrderNotFound(OrderError):
    status_code = 404
    default_message = "Order not found"


class InvalidOrderItems(OrderError):
    default_message = "Order items are invalid"


class ArtworkUnavailable(OrderError):
    def __init__(self, artwork_ids):
        self.artwork_ids = [str(a) for a in artwork_ids]
        super().__init__(f"Artworks not available for purchase: {', '.join(self.artwork_ids)}")


class SelfPurchaseNotAllowed(OrderError):
    def __init__(self, titles):
        self.titles = list(titles)
        super().__init__(f"You cannot purchase your own artwork: {', '.join(self.titles)}")


class OrderPermissionError(OrderError):
    status_code = 403
    default_message = "This order belongs to another user"
