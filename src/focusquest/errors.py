from __future__ import annotations


class FocusQuestError(Exception):
    pass


class NotAuthenticated(FocusQuestError):
    pass


class PersistenceFailure(FocusQuestError):
    pass


class InvalidRule(FocusQuestError, ValueError):
    pass


class TaskNotFound(FocusQuestError, LookupError):
    pass
