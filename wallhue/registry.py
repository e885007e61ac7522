"""Ordered collection of template descriptors."""

from collections.abc import Iterable, Iterator

from .models import Template

__all__ = ["TemplateRegistry"]


class TemplateRegistry:
    """Templates in registration order, unique by id."""

    def __init__(self, templates: Iterable[Template] = ()) -> None:
        self._templates: dict[str, Template] = {}
        for template in templates:
            self.add(template)

    def add(self, template: Template) -> None:
        """Register a template.

        Raises:
            ValueError: if a template with the same id is already registered
        """
        if template.id in self._templates:
            msg = f"Duplicate template id {template.id!r}"
            raise ValueError(msg)
        self._templates[template.id] = template

    def get(self, template_id: str) -> Template | None:
        """Return the template registered under `template_id`, if any."""
        return self._templates.get(template_id)

    def enabled(self) -> list[Template]:
        """Return the enabled templates, in registration order."""
        return [t for t in self._templates.values() if t.enabled]

    def __iter__(self) -> Iterator[Template]:
        return iter(list(self._templates.values()))

    def __len__(self) -> int:
        return len(self._templates)

    def __contains__(self, template_id: object) -> bool:
        return template_id in self._templates
