"""Code agent: memory-informed code, test and refactor generation."""
from __future__ import annotations

import re
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from taskmind.core.models import (
    AgentContext,
    AgentMetadata,
    AgentResult,
    AgentType,
    ExecutionStep,
    Plan,
    PlanStep,
    Task,
)
from taskmind.memory.models import (
    CodeSnippet,
    EmbeddingMetadata,
    LearnedPattern,
    PatternType,
    RecallResult,
    SemanticType,
)

from .base import BaseAgent, extract_json_object

CODE_KEYWORDS = ("code", "implement", "create", "generate", "build", "develop", "function", "class", "interface")

EXTENSIONS = {"python": "py", "typescript": "ts", "javascript": "js", "go": "go", "java": "java", "rust": "rs"}

_CODE_BLOCK = re.compile(r"```[\w+-]*\n([\s\S]*?)```")
_TEST_CASE = re.compile(r"def test_|\bit\(|\btest\(")

PLANNER_PROMPT = "You are a code generation agent that creates high-quality code based on past patterns."

HINTS_FORMAT = """Respond with JSON only:
{
  "needs_interface": true,
  "needs_implementation": true,
  "interface": {"name": "...", "requirements": "..."},
  "implementation": {"name": "...", "description": "..."},
  "main_file": "...",
  "testing_strategy": "...",
  "estimated_minutes": 10
}"""


def extract_code(text: str) -> str:
    match = _CODE_BLOCK.search(text)
    if match:
        return match.group(1).strip()
    return text.strip()


def slugify(text: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "_", text.lower()).strip("_")
    return slug or "generated"


def plan_confidence(memory: RecallResult, snippet_count: int) -> float:
    confidence = 0.5
    confidence += 0.1 * sum(1 for similar in memory.similar if similar.success)
    confidence += min(0.05 * len(memory.patterns), 0.2)
    confidence += min(0.05 * snippet_count, 0.2)
    return min(confidence, 0.95)


HINT_TYPES = {
    "needs_interface": bool,
    "needs_implementation": bool,
    "interface": dict,
    "implementation": dict,
    "main_file": str,
    "testing_strategy": str,
    "estimated_minutes": (int, float),
}


def heuristic_hints(text: str, task: Task, extension: str) -> Dict[str, Any]:
    name = slugify(task.title)
    return {
        "needs_interface": "interface" in text,
        "needs_implementation": "implementation" in text or "class" in text,
        "interface": {"name": name, "requirements": task.description},
        "implementation": {"name": name, "description": task.description},
        "main_file": f"{name}.{extension}",
        "testing_strategy": "comprehensive",
    }


def parse_hints(text: str, task: Task, extension: str) -> Dict[str, Any]:
    """Model-provided plan hints, falling back to keyword heuristics."""
    try:
        data = extract_json_object(text)
    except ValueError:
        return heuristic_hints(text.lower(), task, extension)
    if not isinstance(data, dict):
        return heuristic_hints(text.lower(), task, extension)
    hints = heuristic_hints("", task, extension)
    for key, expected in HINT_TYPES.items():
        value = data.get(key)
        if isinstance(value, expected) and value != "":
            hints[key] = value
    return hints


def path_for_tests(target: str, language: str) -> str:
    directory, _, filename = target.rpartition("/")
    stem, _, extension = filename.rpartition(".")
    if not stem:
        stem, extension = filename, EXTENSIONS.get(language, "txt")
    if language == "python":
        name = f"test_{stem}.{extension}"
    else:
        name = f"{stem}.spec.{extension}"
    return f"{directory}/{name}" if directory else name


def analyze_improvements(original: str, refactored: str) -> List[str]:
    improvements = []
    if len(refactored) < len(original) * 0.9:
        improvements.append("Reduced code size")
    if "try" in refactored and "try" not in original:
        improvements.append("Added error handling")
    if len(refactored.splitlines()) < len(original.splitlines()) * 0.8:
        improvements.append("Improved code density")
    return improvements or ["General code quality improvements"]


def code_patterns(content: str) -> List[Dict[str, str]]:
    patterns = []
    if re.search(r"\bclass \w+\s*(\(|implements|extends)", content):
        patterns.append(
            {"template": "class ${ClassName} implements ${Interface}", "description": "Class implementing interface pattern"}
        )
    if "async" in content and "try" in content:
        patterns.append(
            {"template": "async method with error handling", "description": "Async code with error handling pattern"}
        )
    return patterns


@dataclass(slots=True)
class Workspace:
    """Artifacts produced while executing one code plan."""

    files: Dict[str, str] = field(default_factory=dict)
    tests: Dict[str, str] = field(default_factory=dict)
    interface: Optional[str] = None

    def output(self) -> Dict[str, Any]:
        return {
            "files": [{"path": path, "content": content, "type": "code"} for path, content in self.files.items()],
            "tests": [{"path": path, "content": content, "type": "test"} for path, content in self.tests.items()],
            "summary": f"Generated {len(self.files)} files and {len(self.tests)} test files",
        }


StepHandler = Callable[[PlanStep, AgentContext, Workspace], Awaitable[AgentResult]]


class CodeAgent(BaseAgent):
    """Generates interfaces, implementations and tests, learning from past runs."""

    METADATA = AgentMetadata(
        id="code-001",
        name="Code Agent",
        type=AgentType.CODE,
        description="Autonomous code generation with memory integration",
        capabilities=frozenset({"code_generation", "testing", "pattern_learning"}),
        max_concurrent_tasks=3,
    )

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self._handlers: Dict[str, StepHandler] = {
            "generate_interface": self.generate_interface,
            "generate_implementation": self.generate_implementation,
            "generate_test": self.generate_test,
            "refactor_code": self.refactor_code,
            "apply_pattern": self.apply_pattern,
        }

    async def on_initialize(self) -> None:
        self._logger.info("Code Agent initialized")

    async def can_handle(self, task: Task) -> bool:
        text = task.text.lower()
        return any(keyword in text for keyword in CODE_KEYWORDS)

    async def build_plan(self, task: Task, context: AgentContext, memory: Optional[RecallResult]) -> Plan:
        memory = memory or RecallResult()
        snippets: List[CodeSnippet] = []
        if self._memory is not None:
            snippets = (
                await self.best_effort("Snippet lookup", self._memory.long_term.search_code_snippets(task.description))
                or []
            )

        language = str(task.metadata.get("language", "python")).lower()
        extension = EXTENSIONS.get(language, "txt")
        text, _ = await self.call_model(
            self._planning_prompt(task, memory, snippets), context, system_prompt=PLANNER_PROMPT
        )
        hints = parse_hints(text, task, extension)
        steps = self._steps(hints, memory, language)
        confidence = plan_confidence(memory, len(snippets))

        self.log_decision(
            context,
            "plan_code_generation",
            f"Generated {len(steps)} steps based on {len(snippets)} similar code snippets",
            confidence,
            description=f"Plan code generation for {task.title}",
        )
        try:
            minutes = float(hints.get("estimated_minutes") or 10)
        except (TypeError, ValueError):
            minutes = 10.0
        return Plan(steps=steps, estimated_duration=minutes * 60, confidence=confidence, required_agents=[AgentType.CODE])

    async def run_plan(self, plan: Plan, context: AgentContext) -> AgentResult:
        workspace = Workspace()
        sub_results: List[AgentResult] = []

        for step in plan.steps:
            started = time.perf_counter()
            handler = self._handlers.get(step.action or "")
            if handler is None:
                step_result = AgentResult.failure(f"Unknown action: {step.action}")
            else:
                try:
                    step_result = await handler(step, context, workspace)
                except Exception as exc:  # noqa: BLE001
                    self._logger.warning("Code step %s failed", step.action, exc_info=True)
                    step_result = AgentResult.failure(f"{step.action} failed: {exc}")
            step_result.duration = time.perf_counter() - started
            sub_results.append(step_result)
            context.trace.steps.append(
                ExecutionStep(
                    agent_id=self.agent_id,
                    action=step.action or step.id,
                    output=step_result.output,
                    duration=step_result.duration,
                    tokens_used=step_result.tokens_used,
                    success=step_result.success,
                )
            )
            if not step_result.success:
                return AgentResult(
                    success=False,
                    output=None,
                    reasoning=f"Step failed: {step.action}: {step_result.reasoning}",
                    tokens_used=sum(result.tokens_used for result in sub_results),
                    sub_results=sub_results,
                )

        await self._learn_patterns(workspace, context)
        return AgentResult(
            success=True,
            output=workspace.output(),
            reasoning="Code generation completed",
            tokens_used=sum(result.tokens_used for result in sub_results),
            sub_results=sub_results,
        )

    async def generate_interface(self, step: PlanStep, context: AgentContext, workspace: Workspace) -> AgentResult:
        name = step.inputs.get("name", "generated")
        language = step.inputs.get("language", "python")
        similar = []
        if self._memory is not None:
            similar = (
                await self.best_effort(
                    "Interface lookup",
                    self._memory.semantic.search_similar(f"interface {name}", 5, semantic_type=SemanticType.CODE),
                )
                or []
            )
        prompt = f"Generate a {language} interface for {name}.\nRequirements: {step.inputs.get('requirements', '')}"
        if similar:
            prompt += "\n\nSimilar interfaces from past projects:\n" + "\n\n".join(hit.content for hit in similar)
        code, tokens = await self._generate("generate_interface", prompt, f"You are an expert {language} developer.", step, context)

        path = step.inputs.get("path") or f"{name}_interface.{EXTENSIONS.get(language, 'txt')}"
        workspace.files[path] = code
        workspace.interface = code
        if self._memory is not None:
            await self.best_effort(
                "Interface embedding",
                self._memory.semantic.store_embedding(
                    code,
                    EmbeddingMetadata(
                        type=SemanticType.CODE,
                        source="code_agent",
                        agent_id=self.agent_id,
                        task_id=context.task_id,
                        tags=("interface", language, name),
                    ),
                ),
            )
        return AgentResult(
            success=True,
            output={"file_path": path, "lines_of_code": len(code.splitlines())},
            reasoning=step.description,
            tokens_used=tokens,
        )

    async def generate_implementation(
        self, step: PlanStep, context: AgentContext, workspace: Workspace
    ) -> AgentResult:
        description = step.inputs.get("description", step.description)
        language = step.inputs.get("language", "python")
        patterns: List[LearnedPattern] = []
        snippets: List[CodeSnippet] = []
        if self._memory is not None:
            patterns = (
                await self.best_effort(
                    "Pattern lookup", self._memory.long_term.get_patterns(PatternType.CODE_GENERATION)
                )
                or []
            )
            snippets = (
                await self.best_effort("Snippet lookup", self._memory.long_term.search_code_snippets(description))
                or []
            )

        prompt = f"Generate a {language} implementation for: {description}"
        if workspace.interface:
            prompt += f"\n\nInterface to implement:\n{workspace.interface}"
        if patterns:
            prompt += "\n\nApply these successful patterns:\n" + "\n".join(
                f"- {pattern.description}: {pattern.pattern}" for pattern in patterns
            )
        if snippets:
            prompt += "\n\nReference implementations:\n" + "\n\n---\n\n".join(snippet.code for snippet in snippets)
        prompt += "\n\nInclude error handling and logging, and keep the code testable."
        code, tokens = await self._generate(
            "generate_implementation",
            prompt,
            f"You are an expert {language} developer focused on clean, maintainable code.",
            step,
            context,
        )

        path = step.inputs.get("path") or step.inputs.get("main_file") or f"generated.{EXTENSIONS.get(language, 'txt')}"
        workspace.files[path] = code
        if self._memory is not None:
            await self.best_effort(
                "Snippet write",
                self._memory.long_term.store_code_snippet(
                    CodeSnippet(
                        language=language,
                        purpose=description,
                        code=code,
                        tags=["implementation", *step.inputs.get("tags", [])],
                    )
                ),
            )
        return AgentResult(
            success=True,
            output={"file_path": path, "lines_of_code": len(code.splitlines())},
            reasoning=step.description,
            tokens_used=tokens,
        )

    async def generate_test(self, step: PlanStep, context: AgentContext, workspace: Workspace) -> AgentResult:
        target = step.inputs.get("target_file", "")
        language = step.inputs.get("language", "python")
        code_to_test = workspace.files.get(target) or step.inputs.get("code", "")
        test_patterns: List[LearnedPattern] = []
        if self._memory is not None:
            test_patterns = (
                await self.best_effort("Pattern lookup", self._memory.long_term.get_patterns(PatternType.TESTING))
                or []
            )

        prompt = f"Generate comprehensive {language} tests for the following code:\n\n{code_to_test}"
        if test_patterns:
            prompt += "\n\nApply these successful test patterns:\n" + "\n".join(
                f"- {pattern.description}" for pattern in test_patterns
            )
        prompt += f"\n\nTesting approach: {step.inputs.get('approach', 'comprehensive')}. Cover edge cases and errors."
        test_code, tokens = await self._generate(
            "generate_test", prompt, "You are an expert at writing comprehensive test suites.", step, context
        )

        path = step.inputs.get("path") or path_for_tests(target or "generated", language)
        workspace.tests[path] = test_code
        return AgentResult(
            success=True,
            output={"test_path": path, "test_count": len(_TEST_CASE.findall(test_code))},
            reasoning=step.description,
            tokens_used=tokens,
        )

    async def refactor_code(self, step: PlanStep, context: AgentContext, workspace: Workspace) -> AgentResult:
        target = step.inputs.get("file", "")
        current = workspace.files.get(target) or step.inputs.get("code", "")
        optimizations: List[LearnedPattern] = []
        if self._memory is not None:
            optimizations = (
                await self.best_effort(
                    "Pattern lookup", self._memory.long_term.get_patterns(PatternType.OPTIMIZATION)
                )
                or []
            )

        focus = step.inputs.get("improvements") or ["readability", "performance", "error handling"]
        prompt = f"Refactor the following code for better quality:\n\n{current}\n\nFocus on: {', '.join(focus)}"
        if optimizations:
            prompt += "\n\nApply these optimization patterns:\n" + "\n".join(p.description for p in optimizations)
        refactored, tokens = await self._generate(
            "refactor_code", prompt, "You are a code refactoring expert.", step, context
        )

        workspace.files[target] = refactored
        return AgentResult(
            success=True,
            output={"file": target, "improvements": analyze_improvements(current, refactored)},
            reasoning=step.description,
            tokens_used=tokens,
        )

    async def apply_pattern(self, step: PlanStep, context: AgentContext, workspace: Workspace) -> AgentResult:
        pattern_type = step.inputs.get("pattern_type", PatternType.CODE_GENERATION)
        patterns: List[LearnedPattern] = []
        if self._memory is not None:
            patterns = await self._memory.long_term.get_patterns(pattern_type)
        if not patterns:
            return AgentResult.failure(f"No patterns found for type: {pattern_type}")

        best = max(patterns, key=lambda pattern: pattern.success_rate)
        prompt = (
            "Apply this pattern to generate code:\n\n"
            f"Pattern: {best.description}\n"
            f"Template: {best.pattern}\n\n"
            f"Context: {step.inputs.get('context', '')}\n"
            f"Requirements: {step.inputs.get('requirements', step.description)}"
        )
        code, tokens = await self._generate(
            "apply_pattern",
            prompt,
            "Apply the given pattern precisely while adapting to the specific requirements.",
            step,
            context,
        )

        language = step.inputs.get("language", "python")
        path = step.inputs.get("path") or f"{step.inputs.get('name', 'generated')}.{EXTENSIONS.get(language, 'txt')}"
        workspace.files[path] = code
        await self.best_effort("Pattern usage update", self._memory.long_term.update_pattern_usage(best.id, True))
        return AgentResult(
            success=True,
            output={"file_path": path, "pattern_applied": best.type, "confidence": best.success_rate},
            reasoning=step.description,
            tokens_used=tokens,
        )

    async def _generate(
        self, kind: str, prompt: str, system_prompt: str, step: PlanStep, context: AgentContext
    ) -> Tuple[str, int]:
        """Produce code for a step kind, preferring a registered skill over the model."""
        if self.has_skill(kind):
            text, tokens = await self.invoke_skill(kind, {"prompt": prompt, **step.inputs}, context)
        else:
            text, tokens = await self.call_model(prompt, context, system_prompt=system_prompt)
        return extract_code(text), tokens

    def _steps(self, hints: Dict[str, Any], memory: RecallResult, language: str) -> List[PlanStep]:
        steps: List[PlanStep] = []
        main_file = str(hints.get("main_file") or f"generated.{EXTENSIONS.get(language, 'txt')}")

        def add(action: str, description: str, inputs: Dict[str, Any], depends_on: List[str]) -> PlanStep:
            step = PlanStep(
                id=f"step-{len(steps)}",
                description=description,
                agent_type=AgentType.CODE,
                dependencies=depends_on,
                expected_output=action,
                action=action,
                inputs={"language": language, **inputs},
                tools=["model", "memory"],
            )
            steps.append(step)
            return step

        interface = None
        implementation = None
        if hints.get("needs_interface"):
            interface = add("generate_interface", "Generate interface", dict(hints.get("interface") or {}), [])
        if hints.get("needs_implementation"):
            implementation = add(
                "generate_implementation",
                "Generate implementation code",
                {**dict(hints.get("implementation") or {}), "main_file": main_file},
                [interface.id] if interface else [],
            )
        add(
            "generate_test",
            "Generate comprehensive tests",
            {"target_file": main_file, "approach": hints.get("testing_strategy", "comprehensive")},
            [steps[-1].id] if steps else [],
        )
        if any(pattern.type == PatternType.OPTIMIZATION for pattern in memory.patterns):
            add(
                "refactor_code",
                "Apply optimization patterns",
                {"file": main_file, "improvements": ["performance", "readability"]},
                [(implementation or steps[-1]).id],
            )
        return steps

    def _planning_prompt(self, task: Task, memory: RecallResult, snippets: List[CodeSnippet]) -> str:
        prompt = (
            f"Plan code generation for: {task.title}\n"
            f"Description: {task.description}\n\n"
            "Break this down into specific code generation steps."
        )
        if snippets:
            prompt += "\n\nRelevant code from past projects:\n" + "\n".join(
                f"- {s.purpose}: {s.language} ({s.success_rate:.0%} success)" for s in snippets
            )
        if memory.patterns:
            prompt += "\n\nSuccessful patterns to consider:\n" + "\n".join(
                f"- {p.type}: {p.description} ({p.usage_count} uses)" for p in memory.patterns
            )
        if memory.similar:
            prompt += "\n\nSimilar tasks completed:\n" + "\n".join(
                f"- {t.title}: {'Success' if t.success else 'Failed'}" for t in memory.similar
            )
        return f"{prompt}\n\n{HINTS_FORMAT}"

    async def _learn_patterns(self, workspace: Workspace, context: AgentContext) -> None:
        if self._memory is None:
            return
        for content in workspace.files.values():
            for found in code_patterns(content):
                await self.best_effort(
                    "Pattern write",
                    self._memory.long_term.store_pattern(
                        LearnedPattern(
                            type=PatternType.CODE_GENERATION,
                            pattern=found["template"],
                            description=found["description"],
                            examples=[context.task_id],
                        )
                    ),
                )
