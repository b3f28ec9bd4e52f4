from __future__ import annotations

from dataclasses import dataclass, replace
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Iterable, Mapping, Optional

from loguru import logger

from .errors import UnknownAgentError


_FRONTEND_PROMPT = (
    "You are a pragmatic and technically focused frontend architect, specializing in React and"
    " TypeScript. When the user asks for code, always provide complete, working implementations"
    " with all necessary imports and the file structure, using TypeScript and modern React patterns."
    " Give step-by-step implementation instructions and consider error handling and edge cases."
    " Structure code responses with the file name and path, the complete implementation,"
    " installation instructions for new packages, and usage examples. Use the project's stack:"
    " React with TypeScript, Tailwind CSS, ShadCN UI components and React Query."
    " Keep responses technically precise."
)

_DESIGN_PROMPT = (
    "You are a UI/UX designer who specializes in implementing modern, responsive interfaces."
    " When asked to code something, provide complete, working implementations using React,"
    " TypeScript, Tailwind CSS, ShadCN UI components and Framer Motion. Implement responsive,"
    " mobile-first layouts, include animations and transitions, and consider accessibility,"
    " performance, visual hierarchy and interactive feedback. Structure responses with the file"
    " name and location, the complete implementation, Tailwind classes, animation definitions"
    " and responsive design considerations."
)

_BACKEND_PROMPT = (
    "You are a methodical backend engineer who provides complete, working code implementations."
    " When asked to implement a feature, provide full API endpoint implementations, database"
    " schema definitions, necessary types and interfaces, proper error handling and input"
    " validation, and consider security best practices. Structure responses with the file location"
    " and name, the complete implementation, database migrations if needed, API documentation and"
    " security considerations. Focus on Express.js endpoints, database operations and authentication."
)

_FULLSTACK_PROMPT = (
    "You are a full-stack integrator who provides complete, working code for both frontend and"
    " backend. When asked to code something, include both layers, handle data flow between them,"
    " implement proper error handling, consider security and performance, and provide deployment"
    " instructions. Structure responses with file names and locations, the complete frontend and"
    " backend implementations, schema changes if needed, API documentation, integration"
    " instructions and testing considerations."
)


@dataclass(frozen=True)
class Persona:
    agent_id: str
    name: str
    instruction: str
    temperature: float
    max_tokens: int = 1500

    def __post_init__(self) -> None:
        if not 0.0 <= self.temperature <= 1.0:
            raise ValueError(f"temperature for {self.agent_id!r} must be within [0, 1], got {self.temperature}")
        if not self.instruction.strip():
            raise ValueError(f"instruction for {self.agent_id!r} must not be empty")


DEFAULT_PERSONAS: tuple[Persona, ...] = (
    Persona("frontend", "Frontend Architect", _FRONTEND_PROMPT, 0.3),
    Persona("design", "UI/UX Designer", _DESIGN_PROMPT, 0.7),
    Persona("backend", "Backend Engineer", _BACKEND_PROMPT, 0.4),
    Persona("fullstack", "Full-Stack Integrator", _FULLSTACK_PROMPT, 0.5),
)

# Long-form message types spoken by earlier clients
DEFAULT_ALIASES: Dict[str, str] = {
    "frontend_architect": "frontend",
    "uiux_designer": "design",
    "backend_engineer": "backend",
    "fullstack_integrator": "fullstack",
}


class AgentRegistry:
    """Closed, read-only mapping from agent identifier to persona."""

    def __init__(self, personas: Iterable[Persona], aliases: Optional[Mapping[str, str]] = None) -> None:
        table: Dict[str, Persona] = {}
        for persona in personas:
            if persona.agent_id in table:
                raise ValueError(f"duplicate agent id {persona.agent_id!r}")
            table[persona.agent_id] = persona
        alias_table: Dict[str, str] = {}
        for alias, target in (aliases or {}).items():
            if target not in table:
                raise ValueError(f"alias {alias!r} points at unknown agent {target!r}")
            if alias in table:
                raise ValueError(f"alias {alias!r} shadows an agent id")
            alias_table[alias] = target
        self._personas = MappingProxyType(table)
        self._aliases = MappingProxyType(alias_table)

    def get(self, agent_id: Any) -> Optional[Persona]:
        if not isinstance(agent_id, str):
            return None
        key = self._aliases.get(agent_id, agent_id)
        return self._personas.get(key)

    def resolve(self, agent_id: Any) -> Persona:
        persona = self.get(agent_id)
        if persona is None:
            raise UnknownAgentError(f"unknown agent id {agent_id!r}")
        return persona

    def __contains__(self, agent_id: Any) -> bool:
        return self.get(agent_id) is not None

    def __len__(self) -> int:
        return len(self._personas)

    def ids(self) -> list[str]:
        return list(self._personas)

    def aliases(self) -> Mapping[str, str]:
        return self._aliases


def _load_instruction(prompts_dir: Optional[Path], persona: Persona) -> str:
    # Allow override via PROMPTS_DIR/<agent_id>.md; else keep the built-in text
    if prompts_dir is None:
        return persona.instruction
    path = Path(prompts_dir) / f"{persona.agent_id}.md"
    if not path.is_file():
        return persona.instruction
    try:
        text = path.read_text(encoding="utf-8").strip()
    except OSError as e:
        logger.warning(f"Falling back to built-in prompt for {persona.agent_id}: {e}")
        return persona.instruction
    if not text:
        logger.warning(f"Prompt override {path} is empty; keeping built-in prompt for {persona.agent_id}")
        return persona.instruction
    logger.info(f"persona_prompt_override | agent={persona.agent_id} | path={path}")
    return text


def build_registry(prompts_dir: Optional[Path] = None, max_tokens: Optional[int] = None) -> AgentRegistry:
    personas = []
    for persona in DEFAULT_PERSONAS:
        changes: Dict[str, Any] = {"instruction": _load_instruction(prompts_dir, persona)}
        if max_tokens:
            changes["max_tokens"] = max_tokens
        personas.append(replace(persona, **changes))
    return AgentRegistry(personas, DEFAULT_ALIASES)
