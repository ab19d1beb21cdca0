"""
DevShop configuration.

Pydantic models for budgets, routing keywords, agents, sessions and logging,
loaded from YAML with environment variable overrides.
"""

import os
import yaml
from pathlib import Path
from typing import Dict, Any, Optional, List
from pydantic import BaseModel, Field, ValidationError, field_validator


AGENT_NAMES = {"ba": "Business Analyst", "tl": "Tech Lead"}

DEFAULT_TECHNICAL_KEYWORDS = [
    'architecture', 'technical', 'code', 'implementation', 'database',
    'api', 'performance', 'scalability', 'security', 'framework',
    'library', 'deployment', 'infrastructure', 'system design',
    'algorithm', 'data structure', 'design pattern', 'refactor',
    'optimize', 'debug', 'test', 'unit test', 'integration',
    'docker', 'kubernetes', 'ci/cd', 'devops', 'monitoring'
]

DEFAULT_BUSINESS_KEYWORDS = [
    'requirement', 'requirements', 'user story', 'user stories', 'acceptance criteria', 'workflow',
    'business logic', 'business', 'process', 'stakeholder', 'user experience',
    'feature', 'functionality', 'behavior', 'use case', 'scenario',
    'validation', 'specification', 'analysis', 'documentation',
    'priority', 'scope', 'milestone', 'timeline', 'deliverable'
]


class BudgetConfig(BaseModel):
    """Default per-session consumption limits."""
    max_tokens: int = Field(default=10000, gt=0)
    max_cost_usd: float = Field(default=5.00, gt=0)
    warning_threshold: float = Field(default=0.8, gt=0.0, le=1.0)


class IntentKeywords(BaseModel):
    """Versioned keyword tables used for intent detection."""
    version: str = "1"
    technical: List[str] = Field(default_factory=lambda: list(DEFAULT_TECHNICAL_KEYWORDS))
    business: List[str] = Field(default_factory=lambda: list(DEFAULT_BUSINESS_KEYWORDS))

    @field_validator('technical', 'business')
    @classmethod
    def normalize_keywords(cls, v):
        """Lower-case keywords and drop blanks."""
        return [keyword.strip().lower() for keyword in v if keyword and keyword.strip()]


class RoutingConfig(BaseModel):
    """Configuration for agent routing."""
    intent_keywords: IntentKeywords = Field(default_factory=IntentKeywords)


class AgentConfig(BaseModel):
    """Configuration for a conversational agent."""
    agent_id: str = Field(pattern="^(ba|tl)$")
    name: str
    enabled: bool = True
    model: Optional[str] = None
    invocation_timeout: float = Field(default=120.0, gt=0)


class SessionConfig(BaseModel):
    """Configuration for conversation sessions."""
    storage_directory: str = "~/.devshop/sessions"
    state_key: str = "conversation"
    enable_persistence: bool = True


class LoggingConfig(BaseModel):
    """Configuration for logging settings."""
    level: str = Field(default="INFO", pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$")
    format: str = Field(default="structured", pattern="^(structured|simple)$")
    directory: str = "~/.devshop/logs"
    max_file_size: int = Field(default=10 * 1024 * 1024, gt=0)  # 10MB
    backup_count: int = Field(default=5, ge=1)
    include_trace: bool = True
    environment: str = "development"


def _default_agents() -> Dict[str, AgentConfig]:
    return {agent_id: AgentConfig(agent_id=agent_id, name=name) for agent_id, name in AGENT_NAMES.items()}


class DevShopConfig(BaseModel):
    """Main DevShop configuration."""
    budget: BudgetConfig = Field(default_factory=BudgetConfig)
    routing: RoutingConfig = Field(default_factory=RoutingConfig)
    session: SessionConfig = Field(default_factory=SessionConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    agents: Dict[str, AgentConfig] = Field(default_factory=_default_agents)

    # Global settings
    debug: bool = False
    config_file_path: Optional[str] = None

    def agent_timeout(self, agent_id: str) -> float:
        """Invocation timeout for an agent, falling back to the BA setting."""
        agent = self.agents.get(agent_id) or self.agents.get("ba")
        return agent.invocation_timeout if agent else 120.0


def _as_bool(value: str) -> bool:
    return value.strip().lower() in ("true", "1", "yes", "on")


# Environment variable -> (path inside the config document, converter)
ENV_OVERRIDES = {
    "MAX_TOKENS_PER_SESSION": (("budget", "max_tokens"), int),
    "MAX_COST_PER_SESSION": (("budget", "max_cost_usd"), float),
    "DEVSHOP_LOG_LEVEL": (("logging", "level"), str.upper),
    "DEVSHOP_SESSION_DIR": (("session", "storage_directory"), str),
    "DEVSHOP_DEBUG": (("debug",), _as_bool),
}

CONFIG_SEARCH_PATHS = ("./devshop.yaml", "./config/devshop.yaml", "~/.devshop/config.yaml")


class ConfigurationError(Exception):
    """Raised when configuration cannot be read or does not validate."""
    pass


class ConfigurationManager:
    """Loads DevShopConfig from YAML, then applies environment overrides."""

    def __init__(self, config_path: Optional[str] = None):
        self.config_path = config_path or self._locate_config_file()
        self.config: Optional[DevShopConfig] = None

    @staticmethod
    def _locate_config_file() -> str:
        """``DEVSHOP_CONFIG_PATH`` wins; otherwise the first existing search path."""
        explicit = os.environ.get("DEVSHOP_CONFIG_PATH")
        if explicit:
            return explicit

        for candidate in CONFIG_SEARCH_PATHS:
            if Path(candidate).expanduser().is_file():
                return candidate
        return CONFIG_SEARCH_PATHS[-1]

    def load_config(self, config_path: Optional[str] = None) -> DevShopConfig:
        """Read, override and validate the configuration.

        A missing file is not an error; defaults plus environment overrides apply.

        Raises:
            ConfigurationError: On malformed YAML, bad overrides or failed validation
        """
        if config_path:
            self.config_path = config_path
        config_file = Path(self.config_path).expanduser()

        document = self._read_document(config_file)
        document = self._apply_environment(document)

        try:
            config = DevShopConfig.model_validate(document)
        except ValidationError as e:
            raise ConfigurationError(f"Configuration validation failed: {e}")

        config.config_file_path = str(config_file) if config_file.is_file() else None
        self.config = config
        return config

    @staticmethod
    def _read_document(config_file: Path) -> Dict[str, Any]:
        if not config_file.is_file():
            return {}
        try:
            with open(config_file, 'r') as f:
                document = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in config file {config_file}: {e}")

        if document is None:
            return {}
        if not isinstance(document, dict):
            raise ConfigurationError(f"Config file {config_file} must contain a mapping")
        return document

    @staticmethod
    def _apply_environment(document: Dict[str, Any]) -> Dict[str, Any]:
        """Overlay environment variables onto the parsed document."""
        for env_var, (path, convert) in ENV_OVERRIDES.items():
            raw = os.environ.get(env_var)
            if raw is None:
                continue
            try:
                value = convert(raw)
            except ValueError:
                raise ConfigurationError(f"{env_var} has an invalid value: {raw!r}")

            section = document
            for key in path[:-1]:
                section = section.setdefault(key, {})
            section[path[-1]] = value

        raw_timeout = os.environ.get("DEVSHOP_AGENT_TIMEOUT")
        if raw_timeout is not None:
            try:
                timeout = float(raw_timeout)
            except ValueError:
                raise ConfigurationError(f"DEVSHOP_AGENT_TIMEOUT has an invalid value: {raw_timeout!r}")

            agents = document.setdefault("agents", {
                agent_id: agent.model_dump() for agent_id, agent in _default_agents().items()
            })
            for agent in agents.values():
                agent["invocation_timeout"] = timeout

        return document

    def get_config(self) -> DevShopConfig:
        if self.config is None:
            raise ConfigurationError("Configuration not loaded. Call load_config() first.")
        return self.config

    def validate_config(self) -> List[str]:
        """Non-fatal problems with the loaded configuration."""
        config = self.get_config()
        warnings = []

        for agent_id, consequence in (
            ("ba", "it is the fallback for every turn"),
            ("tl", "multi-agent sessions will run degraded"),
        ):
            agent = config.agents.get(agent_id)
            if agent is None or not agent.enabled:
                warnings.append(f"{AGENT_NAMES[agent_id]} agent is disabled; {consequence}")

        keywords = config.routing.intent_keywords
        overlap = sorted(set(keywords.technical) & set(keywords.business))
        if overlap:
            warnings.append(f"Keywords in both intent tables resolve to the Tech Lead: {overlap}")

        return warnings


_config_manager: Optional[ConfigurationManager] = None


def initialize_config(config_path: Optional[str] = None) -> ConfigurationManager:
    """Load configuration and install it as the process-wide instance."""
    global _config_manager
    manager = ConfigurationManager(config_path)
    manager.load_config()
    _config_manager = manager
    return manager


def get_config_manager() -> ConfigurationManager:
    if _config_manager is None:
        raise ConfigurationError("Configuration not initialized. Call initialize_config() first.")
    return _config_manager


def get_config() -> DevShopConfig:
    return get_config_manager().get_config()
