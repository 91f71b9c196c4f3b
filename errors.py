class NotFoundError(ValueError):
    pass


class InactiveAccountError(ValueError):
    pass
