import unittest
from pathlib import Path
from unittest.mock import patch

from gooseherd.models import RunEvent
from gooseherd.parsers import run_log as run_log_module
from gooseherd.parsers.platforms.goose.parser import RESULT_CAPTURING_TOOLS, classify_phase, shorten_path
from gooseherd.parsers.run_log import assign_progress, get_event_stats, parse_run_log, read_run_log

FIXTURES = Path(__file__).parent / "fixtures"

TOOL_RULE = "─" * 26


def _header(tool: str, extension: str = "developer") -> str:
    return f"─── {tool} | {extension} {TOOL_RULE}"


def _block(text: str) -> list[str]:
    return [
        "Annotated {",
        "    raw: Text(",
        "        RawTextContent {",
        f"            text: \"{text}\",",
        "            meta: None,",
        "        },",
        "    ),",
        "    annotations: None,",
        "}",
    ]


def _log(*parts) -> str:
    lines: list[str] = []
    for part in parts:
        if isinstance(part, list):
            lines.extend(part)
        else:
            lines.append(part)
    return "\n".join(lines)


def _of_type(events: list[RunEvent], event_type: str) -> list[RunEvent]:
    return [e for e in events if e.type == event_type]


MINIMAL_LOG = _log(
    "Gooseherd run abc-123",
    "",
    "$ git clone 'https://github.com/org/repo.git' '/tmp/.work/abc-123/repo'",
    "Cloning into '/tmp/.work/abc-123/repo'...",
    "",
    "$ cd '/tmp/.work/abc-123/repo' && goose run --no-session -i '/tmp/task.md'",
    "starting session | provider: openrouter model: anthropic/claude-sonnet-4-6",
    "    session id: 20260217_1",
    "    working directory: /tmp/.work/abc-123/repo",
    "I'll look at the project structure first.",
    _header("analyze"),
    "path: /tmp/.work/abc-123/repo",
    "",
    _block("SUMMARY: 3 files"),
    "",
    "The layout is small, I'll edit the page directly.",
    _header("text_editor"),
    "path: /tmp/.work/abc-123/repo/src/page.tsx",
    "command: write",
    "",
    _block("Wrote 12 lines"),
    "",
    "$ git add -A",
    "$ git push origin 'gooseherd/abc-123'",
)


class RunLogParserTests(unittest.TestCase):
    def test_minimal_log_produces_ordered_events(self) -> None:
        events = parse_run_log(MINIMAL_LOG)
        self.assertEqual(
            [e.type for e in events],
            [
                "info",
                "phase_marker",
                "phase_marker",
                "session_start",
                "agent_thinking",
                "tool_call",
                "agent_thinking",
                "tool_call",
                "phase_marker",
                "phase_marker",
            ],
        )
        self.assertEqual([e.index for e in events], list(range(len(events))))

        session = events[3]
        self.assertEqual(session.provider, "openrouter")
        self.assertEqual(session.model, "anthropic/claude-sonnet-4-6")
        self.assertEqual(session.content, "Session started with openrouter / anthropic/claude-sonnet-4-6")

        self.assertEqual([e.phase for e in _of_type(events, "phase_marker")], ["cloning", "agent", "committing", "pushing"])

    def test_run_header_only(self) -> None:
        events = parse_run_log("Gooseherd run abc-123\n")
        self.assertEqual(len(events), 1)
        self.assertEqual(events[0].type, "info")
        self.assertEqual(events[0].content, "Gooseherd run abc-123")
        self.assertEqual(events[0].progressPercent, 0)

    def test_empty_and_noise_only_logs_produce_no_events(self) -> None:
        self.assertEqual(parse_run_log(""), [])
        self.assertEqual(parse_run_log("\n\n\n"), [])
        noise = _log(
            "--- loading .bash_profile",
            "🎊 All secrets loaded from cache! Go forth and code!",
            "zsh:1: command not found: nvm",
            "   ",
        )
        self.assertEqual(parse_run_log(noise), [])

    def test_shell_command_keeps_output_without_noise(self) -> None:
        events = parse_run_log(
            _log(
                "$ git clone 'https://github.com/org/repo.git' '/tmp/repo'",
                "--- loading .bash_profile",
                "🎊 All secrets loaded from cache! Go forth and code!",
                "Cloning into '/tmp/repo'...",
                "",
                "$ ls src",
                "index.ts",
                "zsh:1: command not found: nvm",
                "page.tsx",
            )
        )
        self.assertEqual([e.type for e in events], ["phase_marker", "shell_cmd"])
        self.assertEqual(events[0].command, "git clone 'https://github.com/org/repo.git' '/tmp/repo'")
        self.assertEqual(events[0].content, "$ git clone 'https://github.com/org/repo.git' '/tmp/repo'\nCloning into '/tmp/repo'...")
        self.assertIsNone(events[1].phase)
        self.assertEqual(events[1].content, "$ ls src\nindex.ts\npage.tsx")

    def test_tool_params_stop_at_first_non_param_line(self) -> None:
        events = parse_run_log(
            _log(
                _header("shell"),
                "command: ls -la",
                "",
                "total 8",
                "other_key: value",
            )
        )
        self.assertEqual(len(events), 1)
        call = events[0]
        self.assertEqual(call.tool, "shell")
        self.assertEqual(call.extension, "developer")
        self.assertEqual(call.params, {"command": "ls -la"})
        self.assertEqual(call.content, "shell: ls -la\ntotal 8\nother_key: value")

    def test_tool_summary_prefers_path_then_command_then_query(self) -> None:
        events = parse_run_log(
            _log(
                _header("text_editor"),
                "path: /tmp/.work/abc/repo/app/models/user.rb",
                "command: view",
                _header("shell"),
                "command: npm test",
                _header("memory_search", "cems"),
                "query: previous SEO work",
                _header("todo_read"),
            )
        )
        self.assertEqual(
            [e.content for e in events],
            ["text_editor: app/models/user.rb", "shell: npm test", "memory_search: previous SEO work", "todo_read"],
        )

    def test_single_line_result_block_is_attached_to_memory_search(self) -> None:
        raw = _log(
            _header("memory_search", "cems"),
            "query: previous SEO work",
            "Searching memories...",
            r'Annotated { raw: Text(RawTextContent { text: "{\"results\":[{\"content\":\"Previous SEO work\",\"score\":0.9}],\"count\":1}", meta: None }), annotations: None }',
            "Checking what was done before.",
        )
        events = parse_run_log(raw)
        self.assertEqual([e.type for e in events], ["tool_call", "agent_thinking"])
        self.assertEqual(events[0].params, {"query": "previous SEO work"})
        self.assertEqual(events[0].content, "memory_search: previous SEO work\nSearching memories...")
        self.assertEqual(events[0].result, "1 result\n  90% Previous SEO work")
        self.assertEqual(events[1].content, "Checking what was done before.")

    def test_batched_memory_searches_resolve_in_call_order(self) -> None:
        events = parse_run_log(read_run_log(FIXTURES / "memory-batch.log"))
        searches = [e for e in events if e.tool == "memory_search"]
        self.assertEqual(
            [s.params["query"] for s in searches],
            [
                "SEO improvements for landing pages",
                "past mistakes corrections",
                "nonexistent topic with zero results",
            ],
        )
        self.assertEqual(
            searches[0].result,
            "1 result (mode: hybrid)\n  90% Previous SEO work: added meta descriptions to landing pages",
        )
        self.assertIn("Correction:", searches[1].result)
        self.assertTrue(searches[1].result.startswith("2 results\n"))
        self.assertEqual(searches[2].result, "0 results")

        add = next(e for e in events if e.tool == "memory_add")
        self.assertEqual(add.params["content"], "Completed SEO improvements on org/repo. Changed index.ts.")
        self.assertEqual(add.result, "stored")

    def test_memory_batch_fixture_event_sequence(self) -> None:
        events = parse_run_log(read_run_log(FIXTURES / "memory-batch.log"))
        self.assertEqual(
            [e.type for e in events],
            [
                "info",
                "phase_marker",
                "phase_marker",
                "session_start",
                "agent_thinking",
                "tool_call",
                "tool_call",
                "tool_call",
                "agent_thinking",
                "tool_call",
                "agent_thinking",
                "tool_call",
                "tool_call",
                "phase_marker",
                "phase_marker",
                "phase_marker",
            ],
        )
        shell = next(e for e in events if e.tool == "shell")
        self.assertIsNone(shell.result)
        self.assertEqual(shell.content, "shell: git log --oneline -3\nabc1234 Add landing page\ndef5678 Initial commit")
        thoughts = [e.content for e in _of_type(events, "agent_thinking")]
        self.assertEqual(
            thoughts,
            [
                "I'll start by checking memory for related past work.",
                "Let me look at the recent history.",
                "Now I'll implement the changes.",
            ],
        )

    def test_escaped_braces_in_memory_content_do_not_swallow_the_log(self) -> None:
        events = parse_run_log(
            _log(
                _header("memory_search", "cems"),
                "query: q",
                _block(r'{\"results\":[{\"content\":\"He said \\\"{\\\" ok\",\"score\":0.9}],\"count\":1}'),
                "Now I will edit the page.",
                "$ ls",
            )
        )
        self.assertEqual([e.type for e in events], ["tool_call", "agent_thinking", "shell_cmd"])
        self.assertEqual(events[0].result, '1 result\n  90% He said "{" ok')
        self.assertEqual(events[1].content, "Now I will edit the page.")
        self.assertEqual(events[2].command, "ls")

    def test_unanswered_memory_call_does_not_take_a_later_result(self) -> None:
        events = parse_run_log(
            _log(
                _header("memory_search", "cems"),
                "query: A",
                "error: timeout",
                "$ npm test",
                _header("memory_search", "cems"),
                "query: B",
                r'Annotated { raw: Text(RawTextContent { text: "{\"results\":[{\"content\":\"B hit\",\"score\":0.9}],\"count\":1}", meta: None }), annotations: None }',
            )
        )
        searches = [e for e in events if e.tool == "memory_search"]
        self.assertEqual([s.params["query"] for s in searches], ["A", "B"])
        self.assertIsNone(searches[0].result)
        self.assertEqual(searches[1].result, "1 result\n  90% B hit")

    def test_orphan_block_without_pending_call_is_skipped(self) -> None:
        events = parse_run_log(
            _log(
                _header("shell"),
                "command: ls",
                _header("analyze"),
                "path: /tmp/x",
                _block("shell output that arrived late"),
                _block("another detached result"),
                "Continuing with the plan.",
            )
        )
        self.assertEqual([e.type for e in events], ["tool_call", "tool_call", "agent_thinking"])
        self.assertTrue(all(e.result is None for e in events))
        self.assertEqual(events[2].content, "Continuing with the plan.")

    def test_only_whitelisted_tools_capture_results(self) -> None:
        json_block = _block(r'{\"results\":[{\"content\":\"x\",\"score\":0.5}],\"count\":1}')
        events = parse_run_log(
            _log(
                _header("shell"),
                "command: cat results.json",
                json_block,
                _header("memory_search", "cems"),
                "query: x",
                json_block,
            )
        )
        self.assertIsNone(events[0].result)
        self.assertEqual(events[1].result, "1 result\n  50% x")
        for fixture in ("memory-batch.log", "simple-run.log"):
            for event in parse_run_log(read_run_log(FIXTURES / fixture)):
                if event.type == "tool_call" and event.tool not in RESULT_CAPTURING_TOOLS:
                    self.assertIsNone(event.result)

    def test_undecodable_result_consumes_pending_call(self) -> None:
        events = parse_run_log(
            _log(
                _header("memory_search", "cems"),
                "query: broken",
                _block("{not json at all}"),
                _block(r'{\"results\":[],\"count\":0}'),
            )
        )
        self.assertEqual(len(events), 1)
        self.assertIsNone(events[0].result)

    def test_css_braces_inside_strings_do_not_break_block_skipping(self) -> None:
        events = parse_run_log(read_run_log(FIXTURES / "simple-run.log"))
        thoughts = [e.content for e in _of_type(events, "agent_thinking")]
        self.assertIn("The header color is hard-coded. I'll switch it to the theme variable.", thoughts)
        for event in events:
            self.assertNotIn("color: red; } .nav", event.content)
            self.assertNotIn("Annotations {", event.content)

    def test_simple_run_fixture(self) -> None:
        events = parse_run_log(read_run_log(FIXTURES / "simple-run.log"))
        self.assertEqual(len(events), 16)

        session = _of_type(events, "session_start")[0]
        self.assertEqual((session.provider, session.model), ("openrouter", "grok-4"))

        edit = [e for e in events if e.tool == "text_editor"][1]
        self.assertEqual(edit.params["command"], "str_replace")
        self.assertEqual(edit.params["old_str"], ".header { color: red; }")
        self.assertEqual(edit.params["new_str"], ".header { color: var(--brand); }")
        self.assertEqual(edit.content, "text_editor: src/styles/header.css")

        tests = next(e for e in events if e.tool == "shell")
        self.assertEqual(tests.content, "shell: npm test\n> site@1.0.0 test\n> vitest run\n ✓ src/header.test.ts (3 tests)")

        self.assertEqual(
            [e.command for e in _of_type(events, "shell_cmd")],
            ["git checkout 'main'", "git checkout -b 'gooseherd/7c1d2e3f'"],
        )

    def test_tool_header_ends_corrupted_block(self) -> None:
        events = parse_run_log(
            _log(
                _header("shell"),
                "command: ls",
                "",
                "Annotated {",
                "    raw: Text(",
                _header("analyze"),
                "path: /tmp/repo",
            )
        )
        self.assertEqual([e.tool for e in events], ["shell", "analyze"])
        self.assertEqual(events[1].params, {"path": "/tmp/repo"})

    def test_leaked_block_tail_is_not_reported_as_reasoning(self) -> None:
        events = parse_run_log(
            _log(
                _header("shell"),
                "command: ls",
                "",
                "Annotated {",
                "    raw: Text(",
                _header("analyze"),
                "path: /tmp/repo",
                "",
                _block("SUMMARY"),
                '            text: "tail of the first block",',
                "            meta: None,",
                "        },",
                "    ),",
                "    annotations: None,",
                "}",
            )
        )
        self.assertEqual([e.type for e in events], ["tool_call", "tool_call"])

    def test_leaked_debug_fields_are_scrubbed_from_reasoning(self) -> None:
        events = parse_run_log(
            _log(
                "I see the files.",
                "    annotations: None,",
                "        RawTextContent {",
                "Next step is the header.",
            )
        )
        self.assertEqual(len(events), 1)
        self.assertEqual(events[0].content, "I see the files.\nNext step is the header.")

    def test_reasoning_flushes_before_each_structural_line(self) -> None:
        events = parse_run_log(
            _log(
                "First thought.",
                "Gooseherd run abc-123",
                "Second thought,",
                "spanning two lines.",
                _header("shell"),
                "command: pwd",
                "",
                "Third thought.",
            )
        )
        thoughts = _of_type(events, "agent_thinking")
        self.assertEqual(
            [t.content for t in thoughts],
            ["First thought.", "Second thought,\nspanning two lines."],
        )
        # Non-param, non-structural lines after a tool call are its output.
        self.assertEqual(events[-1].content, "shell: pwd\nThird thought.")

    def test_noise_never_reaches_event_content(self) -> None:
        for fixture in ("memory-batch.log", "simple-run.log"):
            for event in parse_run_log(read_run_log(FIXTURES / fixture)):
                self.assertNotIn(".bash_profile", event.content)
                self.assertNotIn("All secrets loaded", event.content)
                self.assertNotIn("command not found", event.content)

    def test_parse_outcome_is_recorded(self) -> None:
        with patch.object(run_log_module, "record_parse") as record:
            parse_run_log("\n\n")
            parse_run_log("Gooseherd run abc-123\n")
        self.assertEqual(
            [(c.args[0], c.args[2]) for c in record.call_args_list],
            [("empty", 0), ("success", 1)],
        )

    def test_parsing_is_deterministic(self) -> None:
        raw = read_run_log(FIXTURES / "memory-batch.log")
        first = [e.model_dump() for e in parse_run_log(raw)]
        second = [e.model_dump() for e in parse_run_log(raw)]
        self.assertEqual(first, second)


class ProgressTests(unittest.TestCase):
    def test_significant_events_progress_to_one_hundred(self) -> None:
        events = parse_run_log(read_run_log(FIXTURES / "simple-run.log"))
        significant = [e.progressPercent for e in events if e.type in {"tool_call", "agent_thinking", "session_start"}]
        self.assertEqual(significant, [12.5, 25.0, 37.5, 50.0, 62.5, 75.0, 87.5, 100.0])

    def test_phase_markers_use_fixed_milestones(self) -> None:
        events = parse_run_log(read_run_log(FIXTURES / "memory-batch.log"))
        self.assertEqual(
            [(e.phase, e.progressPercent) for e in _of_type(events, "phase_marker")],
            [("cloning", 5), ("agent", 10), ("committing", 88), ("committing", 88), ("pushing", 95)],
        )

    def test_info_and_plain_shell_commands_stay_at_zero(self) -> None:
        events = parse_run_log(read_run_log(FIXTURES / "simple-run.log"))
        for event in events:
            if event.type in {"info", "shell_cmd"}:
                self.assertEqual(event.progressPercent, 0)

    def test_progress_rounds_to_one_decimal(self) -> None:
        events = [RunEvent(type="agent_thinking", content=str(i)) for i in range(3)]
        assign_progress(events)
        self.assertEqual([e.progressPercent for e in events], [33.3, 66.7, 100.0])

    def test_progress_is_non_decreasing(self) -> None:
        events = parse_run_log(read_run_log(FIXTURES / "memory-batch.log"))
        significant = [e.progressPercent for e in events if e.type in {"tool_call", "agent_thinking", "session_start"}]
        self.assertEqual(significant, sorted(significant))
        self.assertEqual(significant[-1], 100.0)


class EventStatsTests(unittest.TestCase):
    def test_stats_for_memory_batch(self) -> None:
        stats = get_event_stats(parse_run_log(read_run_log(FIXTURES / "memory-batch.log")))
        self.assertEqual(stats.totalEvents, 16)
        self.assertEqual(stats.toolCalls, 6)
        self.assertEqual(stats.thinkingBlocks, 3)
        self.assertEqual(stats.shellCommands, 5)
        self.assertEqual(stats.tools, {"memory_search": 3, "shell": 1, "text_editor": 1, "memory_add": 1})

    def test_stats_for_empty_list(self) -> None:
        stats = get_event_stats([])
        self.assertEqual(stats.model_dump(), {"totalEvents": 0, "toolCalls": 0, "thinkingBlocks": 0, "shellCommands": 0, "tools": {}})

    def test_tool_call_without_name_counts_as_unknown(self) -> None:
        stats = get_event_stats([RunEvent(type="tool_call")])
        self.assertEqual(stats.tools, {"unknown": 1})


class HelperTests(unittest.TestCase):
    def test_shorten_path(self) -> None:
        self.assertEqual(shorten_path("/Users/dev/gooseherd/.work/abc-def-123/repo/app/models/user.rb"), "app/models/user.rb")
        self.assertEqual(shorten_path("/a/b/c/d/e.py"), ".../c/d/e.py")
        self.assertEqual(shorten_path("src/x.py"), "src/x.py")

    def test_classify_phase(self) -> None:
        self.assertEqual(classify_phase("git clone https://example.com/r.git"), "cloning")
        self.assertEqual(classify_phase("cd /tmp/repo && goose run -i task.md"), "agent")
        self.assertEqual(classify_phase("git push origin main"), "pushing")
        self.assertEqual(classify_phase("git commit -m 'x'"), "committing")
        self.assertEqual(classify_phase("git add -A"), "committing")
        self.assertIsNone(classify_phase("npm test"))


if __name__ == "__main__":
    unittest.main()
