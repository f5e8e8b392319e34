"""
Versioned instruction templates.

Templates are data keyed by (stage, domain expert). A stage always has a
default template registered under the ``"*"`` domain; specialty templates
override it for a single domain. Rendering injects the domain profile and
the confidence calibration policy, so prompt text never hard-codes either.
"""

from dataclasses import dataclass, field, replace
from functools import lru_cache
from typing import Any, Iterable, Optional

from src.knowledge.calibration import render_policy
from src.knowledge.domain_table import profile_text
from src.models.schemas import DomainExpert, PipelineStage

ANY_DOMAIN = "*"


# =============================================================================
# Template Types
# =============================================================================

@dataclass(frozen=True)
class InvocationConfig:
    """Per-call configuration handed to the reasoning client."""
    task_type: str
    temperature: float
    max_tokens: int
    response_format: str = "json"
    
    def capped(self, max_tokens: int) -> "InvocationConfig":
        """Copy with the token budget limited to ``max_tokens``."""
        return replace(self, max_tokens=min(self.max_tokens, max_tokens))
    
    def __repr__(self) -> str:
        return f"InvocationConfig({self.task_type}, temp={self.temperature}, max_tokens={self.max_tokens})"


@dataclass(frozen=True)
class Instructions:
    """A rendered template, ready for the reasoning client."""
    system: str
    user: str
    config: InvocationConfig
    template_id: str


@dataclass(frozen=True)
class InstructionTemplate:
    """
    One versioned prompt for one stage.
    
    ``system`` may reference ``{domain_profile}`` and ``{calibration_policy}``;
    ``user_template`` receives the stage context. Literal braces are doubled.
    """
    stage: str
    version: str
    config: InvocationConfig
    system: str
    user_template: str
    domain: str = ANY_DOMAIN
    description: str = ""
    required_context: tuple[str, ...] = field(default_factory=tuple)
    
    @property
    def template_id(self) -> str:
        return f"{self.stage}/{self.domain}@{self.version}"
    
    def render(self, **context: Any) -> Instructions:
        missing = [key for key in self.required_context if key not in context]
        if missing:
            raise ValueError(f"Template {self.template_id} missing context: {', '.join(missing)}")
        return Instructions(
            system=self.system.format(**context),
            user=self.user_template.format(**context),
            config=self.config,
            template_id=self.template_id,
        )
    
    def specialize(
        self,
        domain: DomainExpert | str,
        system_appendix: str,
        version: Optional[str] = None,
        **config_overrides: Any,
    ) -> "InstructionTemplate":
        """Derive a domain-specific template from a stage default."""
        domain_key = domain.value if isinstance(domain, DomainExpert) else str(domain)
        return replace(
            self,
            domain=domain_key,
            version=version or self.version,
            system=self.system + "\n\n" + system_appendix,
            config=replace(self.config, **config_overrides) if config_overrides else self.config,
        )


# =============================================================================
# Registry
# =============================================================================

class TemplateRegistry:
    """Lookup of instruction templates keyed by (stage, domain)."""
    
    def __init__(self, templates: Iterable[InstructionTemplate] = ()):
        self._templates: dict[tuple[str, str], InstructionTemplate] = {}
        for template in templates:
            self.register(template)
    
    def register(self, template: InstructionTemplate, replace_existing: bool = False) -> None:
        key = (template.stage, template.domain)
        if key in self._templates and not replace_existing:
            raise ValueError(f"Template already registered for {key}")
        self._templates[key] = template
    
    def get(self, stage: PipelineStage | str, domain: DomainExpert | str = ANY_DOMAIN) -> InstructionTemplate:
        """
        Template for ``stage``, preferring a ``domain``-specific one.
        
        Raises:
            KeyError: If the stage has no default template
        """
        stage_key = stage.value if isinstance(stage, PipelineStage) else str(stage)
        domain_key = domain.value if isinstance(domain, DomainExpert) else str(domain)
        
        template = self._templates.get((stage_key, domain_key))
        if template is None:
            template = self._templates.get((stage_key, ANY_DOMAIN))
        if template is None:
            available = ", ".join(sorted(self.stages()))
            raise KeyError(f"No template for stage '{stage_key}'. Available: {available}")
        return template
    
    def resolve(
        self,
        stage: PipelineStage | str,
        domain: DomainExpert | str = DomainExpert.GENERAL,
        **context: Any,
    ) -> Instructions:
        """Render the best template for (stage, domain) with ``context``."""
        template = self.get(stage, domain)
        domain_key = domain.value if isinstance(domain, DomainExpert) else str(domain)
        return template.render(
            domain_expert=domain_key,
            domain_profile=profile_text(domain_key, template.stage),
            calibration_policy=render_policy(),
            **context,
        )
    
    def stages(self) -> set[str]:
        return {stage for stage, _ in self._templates}
    
    def versions(self) -> dict[str, str]:
        return {f"{stage}/{domain}": t.version for (stage, domain), t in self._templates.items()}
    
    def __contains__(self, key: tuple[str, str]) -> bool:
        return key in self._templates
    
    def __len__(self) -> int:
        return len(self._templates)


@lru_cache
def default_registry() -> TemplateRegistry:
    """Registry holding every built-in stage template."""
    # Imported here: the prompt modules depend on this one
    from src.analyzers.prompts import ANALYZER_TEMPLATES
    from src.extractors.prompts import EXTRACTOR_TEMPLATES
    
    return TemplateRegistry([*EXTRACTOR_TEMPLATES, *ANALYZER_TEMPLATES])
