"""Prompt templates for the build pipeline.

Each builder is a pure function returning the system prompt for exactly one
pipeline operation.  The runner pairs it with a short user turn (e.g.
``"Generate pom.xml"``) when calling the generation caller.
"""

FRAMEWORK_INFO: dict[str, str] = {
    "paper": "Paper API (modern fork with async events, Adventure components for text)",
    "bukkit": "Bukkit API (legacy, widely compatible)",
    "spigot": "Spigot API (performance-focused Bukkit fork)",
    "folia": "Folia (regionized multithreading for Paper)",
    "purpur": "Purpur (Paper fork with extra configuration)",
    "velocity": "Velocity (modern proxy server)",
    "bungeecord": "BungeeCord (legacy proxy server)",
    "waterfall": "Waterfall (BungeeCord fork with improvements)",
}

ASSISTANT_NAME = "AuroraCraft"


def describe_framework(framework: str) -> str:
    return FRAMEWORK_INFO.get(framework, framework)


def _file_block(path: str, content: str) -> str:
    return f"=== FILE: {path} ===\n{content}\n=== END FILE ==="


# ---------------------------------------------------------------------------
# Planning
# ---------------------------------------------------------------------------

_PLANNING_FORMATS = """\
## RESPONSE FORMAT
Choose ONE of three response types based on the request complexity:

### 1) QUICK CHANGE: small, simple modifications to existing files
Use this for a version bump, rename, config tweak, small bug fix, changing a
single value, adding/removing a single command.  These touch 1-3 existing
files and do not need user approval.
{
  "type": "quick-change",
  "description": "Brief description of what will be changed",
  "files": [
    {"path": "pom.xml", "name": "pom.xml", "description": "Update version from 1.0 to 1.2"}
  ]
}

### 2) BUILD: new plugins or major feature additions
{
  "type": "build",
  "pluginName": "PluginName",
  "packageName": "com.example.pluginname",
  "description": "Brief description of the plugin",
  "phases": [
    {
      "name": "Phase Name",
      "description": "What this phase accomplishes",
      "files": [
        {"path": "pom.xml", "name": "pom.xml", "description": "Maven build configuration"}
      ]
    }
  ]
}

### 3) CONVERSATION: questions, greetings, or non-code requests
{
  "type": "conversation",
  "response": "Your helpful response here with markdown formatting"
}

IMPORTANT: Return ONLY the JSON object. No text before or after it. No markdown code fences around it."""


def build_planning_prompt(
    user_request: str,
    framework: str,
    existing_files: dict[str, str] | None = None,
) -> str:
    """Prompt for the planning stage: a JSON plan, no code, no prose."""
    existing = ""
    if existing_files:
        existing = (
            "\n## EXISTING PROJECT FILES (your memory of the project)\n"
            f"The project already has {len(existing_files)} files. Use this knowledge to make "
            "accurate changes; never ask the user for information already in these files.\n"
        )
        for path, content in existing_files.items():
            existing += f"\n--- {path} ---\n{content}\n--- end ---\n"

    return f"""\
You are {ASSISTANT_NAME}, an expert Minecraft plugin architect specializing in Java 21 and {describe_framework(framework)}.

Your task is to analyze the user's request and create a structured build plan.

## INSTRUCTIONS
1. Analyze the request and design a complete plugin architecture
2. Break the work into logical phases (scaffolding, core, features, etc.)
3. List every file that needs to be created, with its full path and purpose
4. Return ONLY a valid JSON object

## RULES
- Use standard Maven layout: src/main/java/... and src/main/resources/...
- Always include pom.xml and plugin.yml
- Package name should be derived from the plugin name (e.g. com.example.pluginname)
- Each file must have a clear, single responsibility
- Order files within each phase so dependencies come first
- Do NOT include file reading steps in the plan; the build engine reads files automatically
{existing}
{_PLANNING_FORMATS}

User's request: "{user_request}\""""


def revision_request(user_request: str, instructions: str) -> str:
    """Request text used to re-plan after an ``edit`` decision."""
    return f"{user_request}\n\nIMPORTANT MODIFICATIONS: {instructions}"


# ---------------------------------------------------------------------------
# Files
# ---------------------------------------------------------------------------


def build_file_generation_prompt(
    file_path: str,
    file_description: str,
    phase_name: str,
    project_context: str,
    framework: str,
    package_name: str,
) -> str:
    """Prompt for generating exactly one file; output is raw file content."""
    return f"""\
You are {ASSISTANT_NAME}, an expert Java 21 developer specializing in {describe_framework(framework)} plugins.

Generate the COMPLETE content of: `{file_path}`
Purpose: {file_description} | Phase: {phase_name} | Package: {package_name}

{project_context}

RULES: Output ONLY raw file content. No markdown fences, no commentary, no preamble. \
The file must be COMPLETE with no placeholders. All imports must be correct.

Generate `{file_path}`:"""


def build_patch_prompt(
    file_path: str,
    current_content: str,
    fix_reason: str,
    framework: str,
    package_name: str,
) -> str:
    """Prompt for a targeted fix of an existing file."""
    return f"""\
You are {ASSISTANT_NAME}, a {describe_framework(framework)} expert. Apply a targeted fix to `{file_path}` (package: {package_name}).

FIX REQUIRED: {fix_reason}

CURRENT FILE:
{current_content}

RULES: Output ONLY the complete corrected file content. Change ONLY what is necessary to fix the issue. \
Preserve all other code exactly. No markdown fences, no commentary.

Output the corrected `{file_path}`:"""


def build_review_prompt(
    phase_files: dict[str, str],
    framework: str,
    all_files: dict[str, str] | None = None,
) -> str:
    """Prompt for reviewing a finished phase, with other project files attached."""
    blocks = "\n\n".join(_file_block(p, c) for p, c in phase_files.items())
    cross = ""
    others = {p: c for p, c in (all_files or {}).items() if p not in phase_files}
    if others:
        cross = (
            "\n\n## OTHER PROJECT FILES (from previous phases; you may fix these too)\n"
            + "\n\n".join(_file_block(p, c) for p, c in others.items())
        )

    return f"""\
You are {ASSISTANT_NAME}, a Java code reviewer for {describe_framework(framework)} plugins.

Review these files for: missing or incorrect imports, wrong package declarations, missing method \
implementations, inconsistent naming between files, missing plugin.yml entries, incorrect pom.xml dependencies.

{blocks}{cross}

If a fix requires changing a file from a previous phase, include it in the fixes array with its full path.

Return ONLY JSON. If correct: {{"passed": true}}
If fixes needed: {{"passed": false, "fixes": [{{"path": "file/path.java", "reason": "description"}}]}}
No text before or after the JSON."""


def build_summary_prompt(
    plugin_name: str,
    description: str,
    paths: list[str],
    framework: str,
) -> str:
    """Prompt for the final markdown build summary."""
    file_list = "\n".join(f"- `{p}`" for p in paths)
    return f"""\
Build complete: **{plugin_name}** ({framework}): {description}
{len(paths)} files created:
{file_list}

Write a concise markdown build summary. Include: what was built, key features, commands and \
permissions (if any), how to compile (`mvn clean package`), and where to find the JAR."""


def build_file_read_prompt(
    file_path: str,
    content: str,
    user_request: str,
    framework: str,
) -> str:
    """Prompt for analyzing an existing file into a short JSON summary."""
    return f"""\
You are {ASSISTANT_NAME}, a {describe_framework(framework)} code analyst. Analyze this file to understand its structure and purpose.

FILE: `{file_path}`
CONTENT:
{content}

USER'S CURRENT REQUEST: {user_request}

Provide a concise structured analysis as JSON:
{{
  "purpose": "one-line description of what this file does",
  "exports": ["key classes, methods, variables, or config keys"],
  "dependencies": ["imports or dependencies this file relies on"],
  "version": "version number if present, or null",
  "relevantToRequest": "brief note on how this file relates to the request"
}}

Return ONLY the JSON. No markdown fences, no commentary."""


def build_dependency_read_prompt(
    phase_name: str,
    phase_description: str,
    phase_files: list[tuple[str, str]],
    existing_paths: list[str],
) -> str:
    """Prompt asking which existing files a phase needs as context."""
    planned = "\n".join(f"- {path}: {desc}" for path, desc in phase_files)
    existing = "".join(f"\n- {p}" for p in existing_paths)
    return f"""\
You are {ASSISTANT_NAME}. For this build phase, determine which existing project files need to be read for context.

Phase: {phase_name}: {phase_description}
Files to generate in this phase:
{planned}

Existing project files: {existing}

Return ONLY a JSON array of file paths that should be read for context. Example: ["pom.xml", "src/main/java/..."]
If no files need to be read, return an empty array: []
No text before or after the JSON."""


# ---------------------------------------------------------------------------
# Agentic quick-change
# ---------------------------------------------------------------------------


def build_agentic_step_prompt(
    user_request: str,
    file_tree: list[str],
    file_summaries: list[tuple[str, str]],
    previous_actions: list[dict],
) -> str:
    """Prompt for choosing the next quick-change action."""
    knowledge = ""
    if file_summaries:
        knowledge = "\n## FILE KNOWLEDGE (summaries from previous reads)\n" + "\n".join(
            f"- `{path}`: {summary}" for path, summary in file_summaries
        )
    log = ""
    if previous_actions:
        log = "\n## ACTIONS TAKEN SO FAR\n" + "\n".join(
            f"{i}. {a['action']} `{a['path']}`: {a['reason']}"
            for i, a in enumerate(previous_actions, 1)
        )
    tree = "\n".join(f"- {p}" for p in file_tree) or "(no files yet)"

    return f"""\
You are {ASSISTANT_NAME}, an expert Minecraft plugin developer executing a quick change.

## USER REQUEST
{user_request}

## PROJECT FILES
{tree}
{knowledge}{log}

## YOUR TASK
Decide the NEXT single action to take:
- **read**: Read a file to understand its content before making changes
- **update**: Modify an existing file (read it first)
- **create**: Create a brand new file
- **delete**: Delete a file that is no longer needed
- **done**: All changes are complete

Return ONLY JSON. For actions:
{{"action": "read" | "update" | "create" | "delete", "path": "file/path", "reason": "why this action"}}

When finished:
{{"action": "done", "summary": "Brief description of all changes made"}}

No text before or after the JSON."""


def build_continuation_prompt(label: str, partial_tail: str) -> str:
    """Prompt for continuing output that hit the token limit."""
    return f"""\
You were generating {label} but your output was cut off.

Here is the end of what you generated so far:
---
{partial_tail}
---

Continue generating from EXACTLY where you left off. Output ONLY the remaining content.
Do NOT repeat any content that was already generated above."""
