"""Generation pipeline: prompt, humanize, validate, regenerate once, fail closed.

  humanize   ordered (pattern, replacement) rules, pure
  validator  hard rejects, soft penalties, model similarity judge
  generation GenerationPipeline.generate(user_id, topic, angle)
"""

from .generation import GenerationPipeline  # noqa: F401
from .humanize import Rule, humanize, rules_for  # noqa: F401
from .validator import (  # noqa: F401
    HARD_FAIL_THRESHOLD,
    REGENERATE_THRESHOLD,
    Validator,
    forbidden_phrases,
)
