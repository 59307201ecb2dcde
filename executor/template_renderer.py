from jinja2 import Environment, BaseLoader, StrictUndefined, Template, Undefined, meta, pass_context
from jinja2.utils import missing
from typing import Dict, Any, List, Optional
import logging

from utils.formatting import DATE_FORMAT, TIME_FORMAT, format_currency, format_date, format_time

logger = logging.getLogger("automation_service")


class PlaceholderUndefined(Undefined):
    """
    Renders an unknown variable as its original placeholder.

    `{{ client_nmae }}` comes out as `{{client_nmae}}` so a typo is visible in
    the delivered message instead of silently vanishing. A missing key on a
    known object (`{{ client.nickname }}`) renders empty.
    """
    __slots__ = ()

    def __str__(self) -> str:
        if self._undefined_obj is missing and self._undefined_name:
            return "{{" + self._undefined_name + "}}"
        return ""

    def __getattr__(self, name: str) -> Any:
        if name[:2] == "__":
            raise AttributeError(name)
        if self._undefined_obj is missing and self._undefined_name:
            return PlaceholderUndefined(name=f"{self._undefined_name}.{name}")
        return PlaceholderUndefined(obj=None, name=name)


@pass_context
def _date_filter(ctx, value, fmt: Optional[str] = None) -> str:
    return format_date(value, ctx.get("timezone"), fmt or DATE_FORMAT)


@pass_context
def _time_filter(ctx, value, fmt: Optional[str] = None) -> str:
    return format_time(value, ctx.get("timezone"), fmt or TIME_FORMAT)


class TemplateRenderer:
    def __init__(self, strict: bool = False):
        # strict=True raises on a missing variable instead of keeping the placeholder
        self.env = Environment(
            loader=BaseLoader(),
            undefined=StrictUndefined if strict else PlaceholderUndefined,
        )
        self.env.filters["money"] = format_currency
        self.env.filters["date"] = _date_filter
        self.env.filters["time"] = _time_filter
        self._template_cache: Dict[str, Template] = {}

    def _get_template(self, template_str: str) -> Template:
        """
        Retrieves a compiled template from cache or compiles it.
        """
        if template_str not in self._template_cache:
            self._template_cache[template_str] = self.env.from_string(template_str)
        return self._template_cache[template_str]

    def validate(self, template_str: str, context: Dict[str, Any]) -> List[str]:
        """
        Validates if all variables in the template are present in the context.
        Returns a list of missing variables.
        """
        try:
            ast = self.env.parse(template_str)
            required_vars = meta.find_undeclared_variables(ast)
            return sorted(var for var in required_vars if var not in context)
        except Exception as e:
            logger.error(f"Template validation failed: {e}")
            return [f"Template Syntax Error: {str(e)}"]

    def render(self, template_str: str, context: Dict[str, Any]) -> str:
        """Renders a string template with the provided context."""
        if not template_str:
            return ""
        try:
            template = self._get_template(template_str)
            return template.render(**context)
        except Exception as e:
            logger.error(f"Error rendering template: {e}")
            raise ValueError(f"Template rendering failed: {e}")
