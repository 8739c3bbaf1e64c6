"""
mapper/reflection.py - Journaling Prompts from Flagged Trials

Deterministic, non-diagnostic. One prompt per unique (word, flag), in trial
order, at most MAX_PROMPTS.
"""

from dataclasses import dataclass
from typing import Dict, List, Sequence

from .constants import FlagKind
from .types_trial import Trial, TrialFlags

MAX_PROMPTS = 8

FLAG_TEMPLATES: Dict[FlagKind, str] = {
    FlagKind.TIMING_OUTLIER_SLOW: 'You took notably longer on "{w}." What came up for you around that word?',
    FlagKind.TIMING_OUTLIER_FAST: (
        'Your response to "{w}" was very quick. Was this word immediately familiar, or did you feel rushed?'
    ),
    FlagKind.EMPTY_RESPONSE: 'You left "{w}" blank. Did nothing come to mind, or did something hold you back?',
    FlagKind.REPEATED_RESPONSE: (
        'You gave the same response for "{w}" as an earlier word. What connection do you notice between them?'
    ),
    FlagKind.HIGH_EDITING: 'You edited your response to "{w}" several times. What were you weighing?',
    FlagKind.TIMEOUT: 'Time ran out on "{w}" before you responded. What was going through your mind?',
}


@dataclass(frozen=True)
class ReflectionPrompt:
    word: str
    flag: FlagKind
    prompt: str

    def to_dict(self) -> Dict[str, object]:
        return {"words": [self.word], "flag": self.flag.value, "prompt": self.prompt}


def generate_reflection_prompts(trials: Sequence[Trial], trial_flags: Sequence[TrialFlags]) -> List[ReflectionPrompt]:
    scored = [t for t in trials if not t.is_practice]
    flags_by_index = {tf.trial_index: tf.flags for tf in trial_flags}
    prompts: List[ReflectionPrompt] = []
    seen = set()

    for i, trial in enumerate(scored):
        for flag in flags_by_index.get(i, ()):
            key = (trial.stimulus_word, flag)
            if key in seen:
                continue
            seen.add(key)
            prompts.append(ReflectionPrompt(
                word=trial.stimulus_word,
                flag=flag,
                prompt=FLAG_TEMPLATES[flag].format(w=trial.stimulus_word),
            ))
            if len(prompts) >= MAX_PROMPTS:
                return prompts
    return prompts
