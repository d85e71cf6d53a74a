from rest_framework import serializers


class BusinessRuleError(serializers.ValidationError):
    """
    Raised inside a transaction when a business rule is violated.

    DRF turns it into a 400 response with an ``{'error': message}`` body and
    the surrounding ``transaction.atomic`` block rolls back.
    """

    def __init__(self, message, **extra):
        detail = {'error': message}
        detail.update(extra)
        super().__init__(detail)
