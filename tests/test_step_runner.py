from types import SimpleNamespace

from docbot.step_runner import EventStep, StepRunner


def _ctx():
    return SimpleNamespace(seen=[], done=False)


def test_steps_run_in_order_and_skip_if_is_honored():
    runner = StepRunner(
        [
            EventStep("a", lambda ctx: ctx.seen.append("a")),
            EventStep("b", lambda ctx: ctx.seen.append("b"), skip_if=lambda ctx: True),
            EventStep("c", lambda ctx: ctx.seen.append("c")),
        ]
    )
    ctx = _ctx()
    runner.run(ctx)
    assert runner.step_names == ["a", "b", "c"]
    assert ctx.seen == ["a", "c"]


def test_stop_when_skips_all_but_always_run():
    def finish(ctx):
        ctx.seen.append("finish")
        ctx.done = True

    runner = StepRunner(
        [
            EventStep("finish", finish),
            EventStep("later", lambda ctx: ctx.seen.append("later")),
            EventStep("trace", lambda ctx: ctx.seen.append("trace"), always_run=True),
        ],
        stop_when=lambda ctx: ctx.done,
    )
    ctx = _ctx()
    runner.run(ctx)
    assert ctx.seen == ["finish", "trace"]
