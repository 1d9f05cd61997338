"""Model providers behind a single "submit prompt, get text fragments" call."""

import os
from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from types import MappingProxyType

from . import fmt
from .report import ConfigError, TransportError

DEFAULT_TEMPERATURE = 0.3
DEFAULT_MAX_OUTPUT_TOKENS = 4096


@dataclass(frozen=True)
class ProviderSpec:
    name: str
    litellm_prefix: str
    default_model: str
    env_key: str | None
    default_base_url: str | None
    streams: bool


PROVIDERS = MappingProxyType(
    {
        "ollama": ProviderSpec(
            name="Ollama",
            litellm_prefix="ollama_chat",
            default_model="qwen2.5-coder:7b",
            env_key=None,
            default_base_url="http://localhost:11434",
            streams=True,
        ),
        "openai": ProviderSpec(
            name="OpenAI",
            litellm_prefix="openai",
            default_model="gpt-4o",
            env_key="OPENAI_API_KEY",
            default_base_url=None,
            streams=True,
        ),
        "mistral": ProviderSpec(
            name="Mistral",
            litellm_prefix="mistral",
            default_model="mistral-small",
            env_key="MISTRAL_API_KEY",
            default_base_url=None,
            streams=True,
        ),
        "claude": ProviderSpec(
            name="Claude",
            litellm_prefix="anthropic",
            default_model="claude-3-5-sonnet-20241022",
            env_key="ANTHROPIC_API_KEY",
            default_base_url=None,
            streams=False,
        ),
        "gemini": ProviderSpec(
            name="Gemini",
            litellm_prefix="gemini",
            default_model="gemini-1.5-flash",
            env_key="GEMINI_API_KEY",
            default_base_url=None,
            streams=False,
        ),
    }
)


@dataclass(frozen=True)
class ProviderConfig:
    provider: str
    model: str
    api_key: str | None = None
    base_url: str | None = None
    temperature: float = DEFAULT_TEMPERATURE
    max_output_tokens: int = DEFAULT_MAX_OUTPUT_TOKENS
    stream: bool = True

    @property
    def spec(self) -> ProviderSpec:
        return PROVIDERS[self.provider]

    @property
    def model_string(self) -> str:
        """Model id in LiteLLM's provider/model form."""
        prefix = self.spec.litellm_prefix + "/"
        bare = self.model.removeprefix(prefix)
        return prefix + bare


def resolve_provider_config(
    provider: str,
    *,
    model: str | None = None,
    api_key: str | None = None,
    base_url: str | None = None,
    temperature: float | None = None,
    max_output_tokens: int | None = None,
    stream: bool | None = None,
) -> ProviderConfig:
    """Fill in defaults and the API key from the environment.

    Raises ConfigError for an unknown provider or a missing required key.
    """
    spec = PROVIDERS.get(provider)
    if spec is None:
        raise ConfigError(
            f"unknown provider {provider!r}, expected one of: {', '.join(PROVIDERS)}"
        )

    if api_key is None and spec.env_key:
        api_key = os.environ.get(spec.env_key)
    if spec.env_key and not api_key:
        raise ConfigError(
            f"--api-key or {spec.env_key} env var required for {provider} provider"
        )

    return ProviderConfig(
        provider=provider,
        model=model or spec.default_model,
        api_key=api_key,
        base_url=base_url or spec.default_base_url,
        temperature=DEFAULT_TEMPERATURE if temperature is None else temperature,
        max_output_tokens=max_output_tokens or DEFAULT_MAX_OUTPUT_TOKENS,
        stream=spec.streams if stream is None else stream,
    )


class Transport:
    """Sends one user message through LiteLLM and yields text fragments."""

    def __init__(self, config: ProviderConfig, verbose: bool = False):
        self.config = config
        self.verbose = verbose

    @property
    def label(self) -> str:
        return f"{self.config.spec.name} ({self.config.model})"

    def _completion_kwargs(self, prompt: str) -> dict:
        kwargs = dict(
            model=self.config.model_string,
            messages=[{"role": "user", "content": prompt}],
            temperature=self.config.temperature,
            max_tokens=self.config.max_output_tokens,
            stream=self.config.stream,
        )
        if self.config.api_key:
            kwargs["api_key"] = self.config.api_key
        if self.config.base_url:
            kwargs["api_base"] = self.config.base_url
        return kwargs

    def submit(self, prompt: str) -> Iterator[str]:
        """Yield the model's reply as fragments.

        Non-streaming providers yield the whole reply once. Any provider
        failure, before or during the stream, raises TransportError.
        """
        import litellm

        litellm.suppress_debug_info = True

        kwargs = self._completion_kwargs(prompt)
        if self.verbose:
            mode = "streaming" if self.config.stream else "single response"
            fmt.model_info(
                f"Calling model {kwargs['model']} ({mode}, "
                f"temperature={self.config.temperature})"
            )

        try:
            response = litellm.completion(**kwargs)
        except Exception as e:
            raise TransportError(f"LLM call failed: {e}") from e

        if not self.config.stream:
            content = _message_content(response)
            if content:
                yield content
            return

        try:
            for chunk in response:
                text = _delta_content(chunk)
                if text:
                    yield text
        except Exception as e:
            raise TransportError(f"LLM stream failed: {e}") from e


def _message_content(response) -> str:
    try:
        return response.choices[0].message.content or ""
    except (AttributeError, IndexError) as e:
        raise TransportError(f"malformed LLM response: {e}") from e


def _delta_content(chunk) -> str:
    choices = getattr(chunk, "choices", None)
    if not choices:
        return ""
    delta = getattr(choices[0], "delta", None)
    if delta is None:
        return ""
    return getattr(delta, "content", None) or ""


class StaticTransport:
    """Replays a fixed list of fragments; for tests and offline transcripts."""

    def __init__(self, fragments: Iterable[str], label: str = "static"):
        self.fragments = list(fragments)
        self.label = label
        self.prompts: list[str] = []

    def submit(self, prompt: str) -> Iterator[str]:
        self.prompts.append(prompt)
        return iter(self.fragments)
