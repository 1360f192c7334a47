# tenant_guard/core/exceptions.py
"""
Taxonomie des erreurs du moteur.

- InvalidArgument / UnknownAction : erreurs de programmation, toujours propagées
- StorageUnavailable : échec de lecture/écriture sur un store
- NotFound : absence signalée explicitement (rarement utilisée, l'absence
  est en général un état normal)
"""


class TenantGuardError(Exception):
    """Erreur de base du moteur d'isolation"""


class InvalidArgument(TenantGuardError, ValueError):
    """Argument vide ou invalide (sujet, action, IP...)"""


class UnknownAction(TenantGuardError, ValueError):
    """Aucune configuration de limitation pour l'action demandée"""

    def __init__(self, action: str):
        self.action = action
        super().__init__(f"Unknown rate limit action: {action}")


class StorageUnavailable(TenantGuardError):
    """Le store d'événements ou de compteurs est injoignable"""

    def __init__(self, message: str, store: str = None):
        self.store = store
        super().__init__(message)


class NotFound(TenantGuardError):
    """Ressource introuvable"""
