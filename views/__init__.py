from views.confirm_views import AuthorConfirmView, MassDmConfirmView, PruneConfirmView

__all__ = [
    "AuthorConfirmView",
    "MassDmConfirmView",
    "PruneConfirmView",
]
