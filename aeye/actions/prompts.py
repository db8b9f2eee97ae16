from __future__ import annotations

import json
from typing import Any, Dict, List, Tuple


PLAN_FORMAT = "Output format: plan JSON"
PATCH_FORMAT = "Output format: unified diff"
LEARN_FORMAT = "Output format: markdown"


def build_plan_prompt(goal: str, system: Dict[str, Any], tree: List[str]) -> Tuple[str, str]:
    system_prompt = "\n".join(
        [
            "You are a careful senior engineer planning a small, reviewable code change.",
            "Break the goal into concrete steps and name every file you expect to touch.",
            "Respond with a single JSON object and nothing else:",
            '{"summary": str, "steps": [str], "files": [str], "risks": [str]}',
            "",
            PLAN_FORMAT,
        ]
    )
    input_text = "\n".join(
        [
            f"Goal: {goal}",
            "",
            "System profile:",
            json.dumps(system, indent=2),
            "",
            "Repository files:",
            *[f"- {p}" for p in tree],
        ]
    )
    return system_prompt, input_text


def build_patch_prompt(
    intent: Dict[str, Any],
    plan: Dict[str, Any],
    system: Dict[str, Any],
    files: Dict[str, str],
) -> Tuple[str, str]:
    system_prompt = "\n".join(
        [
            "You are a careful senior engineer turning an approved plan into a patch.",
            "Produce a unified diff with `--- a/<path>` and `+++ b/<path>` headers, paths relative to the repository root.",
            "New files use `--- /dev/null`. Do not include any explanation outside the diff.",
            "",
            PATCH_FORMAT,
        ]
    )
    parts = [
        "Intent:",
        json.dumps(intent, indent=2),
        "",
        "Plan:",
        json.dumps(plan, indent=2),
        "",
        "System profile:",
        json.dumps(system, indent=2),
    ]
    for path, content in files.items():
        parts += ["", f"File: {path}", "```", content, "```"]
    return system_prompt, "\n".join(parts)


def build_learn_prompt(intent_json: str, plan_json: str, patch_diff: str) -> Tuple[str, str]:
    system_prompt = "\n".join(
        [
            "You are an expert software engineer reviewing a completed agent run.",
            "Write a concise learning summary in Markdown that answers:",
            "1. What was the original goal?",
            "2. What was the approach?",
            "3. What was the result?",
            "4. What is the key takeaway?",
            "Output a single markdown document and nothing else.",
            "",
            LEARN_FORMAT,
        ]
    )
    input_text = "\n".join(
        [
            "Intent:",
            "```json",
            intent_json,
            "```",
            "",
            "Plan:",
            "```json",
            plan_json,
            "```",
            "",
            "Generated patch:",
            "```diff",
            patch_diff,
            "```",
        ]
    )
    return system_prompt, input_text
