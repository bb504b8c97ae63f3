"""Autonomous task orchestration: planning, execution and self-correction."""
