"""shellcache -- Offline-capable caching layer with versioned cache generations.

This package sits between a client application and its network origins and
decides, per request, whether to answer from a local store, from the network,
or both.  Cached content is grouped into *generations*: each deployed version
of the application owns a pair of store namespaces, and activating a new
generation atomically removes every older one.

Typical usage::

    from shellcache import GenerationConfig, build_runtime

    config = GenerationConfig(version="v13", app_origin="https://app.example.com")
    async with build_runtime(config, store) as runtime:
        await runtime.lifecycle.on_install()
        await runtime.lifecycle.on_activate()
        response = await runtime.engine.respond(request)

Modules:
    models: Pydantic models and enums shared across the package.
    classifier: Request classification and cache-key normalization.
    policies: Per-category caching strategies.
    versioning: Generation install and activation.
    lifecycle: Install/activate state machine driven by host events.
    store: Namespaced response storage (disk and in-memory).
    transport: Network fetch on top of :mod:`httpx`.
    config: XDG-aware configuration loading and precedence resolution.
    exceptions: Exception hierarchy with exit-code mapping.
"""

__version__ = "0.3.0"

from shellcache.models import GenerationConfig, Request  # noqa: E402
from shellcache.runtime import Runtime, build_runtime  # noqa: E402

__all__ = ["GenerationConfig", "Request", "Runtime", "build_runtime", "__version__"]
