"""Quality gate, confidence policies and grounding scoring."""
