"""Loading of the external collaborators a worker process depends on."""

from __future__ import annotations

import importlib
from dataclasses import dataclass

from graphwarden.domain.clients import Classifier, PlatformClient
from graphwarden.domain.repositories import Repository
from graphwarden.main.config import Settings
from graphwarden.main.exceptions import CollaboratorConfigError


@dataclass(slots=True)
class Collaborators:
    repository: Repository
    platform: PlatformClient
    classifier: Classifier


def load_collaborators(settings: Settings) -> Collaborators:
    """Resolve ``settings.collaborators_factory`` and call it.

    The factory is given as ``"package.module:function"`` and is called with
    the settings instance.

    Raises:
        CollaboratorConfigError: If the path is missing, cannot be imported,
            or the factory returns something other than Collaborators.
    """
    path = settings.collaborators_factory
    if not path:
        raise CollaboratorConfigError(
            "COLLABORATORS_FACTORY is not set; expected 'module:function'"
        )

    module_name, _, attr = path.partition(":")
    if not module_name or not attr:
        raise CollaboratorConfigError(
            f"Invalid COLLABORATORS_FACTORY {path!r}; expected 'module:function'"
        )

    try:
        module = importlib.import_module(module_name)
        factory = getattr(module, attr)
    except (ImportError, AttributeError) as exc:
        raise CollaboratorConfigError(f"Cannot load collaborator factory {path!r}: {exc}") from exc

    collaborators = factory(settings)
    if not isinstance(collaborators, Collaborators):
        raise CollaboratorConfigError(
            f"Collaborator factory {path!r} returned {type(collaborators).__name__}, "
            "expected Collaborators"
        )
    return collaborators
