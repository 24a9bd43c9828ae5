"""Core services for BananaLab.

Architecture Overview
---------------------
1. **Configuration Layer** (config.py):
   - Environment-based configuration using Pydantic Settings
   - All settings prefixed with BANANALAB_ in .env files

2. **Prompt Layer** (presets.py, prompt_template.py):
   - JSON-backed preset catalog and input validation
   - ``${...}`` template rendering with conditional branches

3. **Model Layer** (image_client.py, images.py, quality.py):
   - Gemini call wrapper with bounded retry and placeholder fallback
   - Reference image compression with Pillow

4. **Persistence Layer** (credit_ledger.py, generation_history.py, jobs.py):
   - SQLite credit balances and transaction ledger
   - SQLite generation history
   - In-memory job state machine

5. **Orchestration** (generation.py):
   - GenerationService running one generate request end to end
"""

from bananalab.core.config import BananaLabConfig, config
from bananalab.core.generation import GenerationService
from bananalab.core.image_client import GeminiImageClient, GeneratedImage

__all__ = [
    "BananaLabConfig",
    "config",
    "GenerationService",
    "GeminiImageClient",
    "GeneratedImage",
]
