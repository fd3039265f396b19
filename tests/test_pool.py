import logging
from typing import Annotated

import pytest

from podpool.context import Cancelled, Context
from podpool.declarations import Export, Filter, Import
from podpool.domain import BasePod, Ref
from podpool.errors import BadFilterEntry, FilterFailed, SetupFailed
from podpool.pool import PodPool


@pytest.fixture
def pool() -> PodPool:
    return PodPool("test")


class FooSource(BasePod):
    foo: Annotated[int, Export("Foo")]
    foo_filter: Annotated[Ref[int], Filter("Foo", "modify_foo", 100)]

    def set_up(self, ctx):
        self.foo = 100

    def modify_foo(self, ctx):
        self.foo_filter.value -= 1


class BarSource(BasePod):
    foo: Annotated[int, Import("@Foo")]
    bar: Annotated[int, Export()]

    def resolve_ref_link(self, ref_link):
        if ref_link == "@Foo":
            return "Foo"
        return None

    def set_up(self, ctx):
        self.bar = self.foo + 2


class BarSink(BasePod):
    bar: Annotated[int, Import()]

    def set_up(self, ctx):
        self.seen = self.bar


class BarAdder(BasePod):
    foo: Annotated[int, Import("Foo")]
    bar: Annotated[Ref[int], "filter:,modify_bar,-1"]

    def modify_bar(self, ctx):
        self.bar.value += self.foo + 1


class BarDoubler(BasePod):
    foo: Annotated[int, "import:Foo"]
    bar: Annotated[Ref[int], Filter("", "modify_bar", 1)]

    def modify_bar(self, ctx):
        self.bar.value *= 2


def test_imports_exports_and_filters_are_wired(pool):
    doubler = pool.register(BarDoubler())
    adder = pool.register(BarAdder())
    sink = pool.register(BarSink())
    bar_source = pool.register(BarSource())
    foo_source = pool.register(FooSource())

    pool.set_up()

    # Foo: 100 - 1; Bar: (99 + 2) * 2 + 100
    assert foo_source.foo == 99
    assert bar_source.foo == 99
    assert sink.seen == 302
    assert sink.bar == 302
    assert pool.order.index(foo_source) < pool.order.index(bar_source)
    assert pool.order.index(doubler) < pool.order.index(bar_source)
    assert pool.order.index(adder) < pool.order.index(bar_source)
    assert pool.order[-1] is sink

    pool.tear_down()

    for pod in (doubler, adder, sink, bar_source, foo_source):
        assert all(value is None for name, value in vars(pod).items() if name != "seen")
    assert pool.order[-1] is sink


class Greeting(BasePod):
    greeting: Annotated[str, Export("the_greeting")]

    def set_up(self, ctx):
        self.greeting = "Hi!"


class Greeter(BasePod):
    greeting: Annotated[str, Import("the_greeting")]

    def __init__(self, fail_times=0):
        self.fail_times = fail_times

    def set_up(self, ctx):
        if self.fail_times:
            self.fail_times -= 1
            raise RuntimeError("not yet")


class NameAppender(BasePod):
    greeting: Annotated[Ref[str], Filter("the_greeting", "append_name", 0)]

    def append_name(self, ctx):
        self.greeting.value += " Jack!"


def test_filter_changes_export_before_it_is_imported(pool):
    pool.register(Greeting())
    greeter = pool.register(Greeter())
    pool.register(NameAppender())

    with pool.running():
        assert greeter.greeting == "Hi! Jack!"

    assert greeter.greeting is None


def test_setup_can_be_repeated_after_a_failure(pool):
    greeting = pool.register(Greeting())
    greeter = pool.register(Greeter(fail_times=1))
    appender = pool.register(NameAppender())

    with pytest.raises(SetupFailed, match="not yet") as excinfo:
        pool.set_up()

    assert isinstance(excinfo.value.__cause__, RuntimeError)
    assert excinfo.value.cause is excinfo.value.__cause__
    assert greeting.greeting is None
    assert appender.greeting is None
    assert pool.order == []

    pool.set_up()
    assert greeter.greeting == "Hi! Jack!"
    pool.tear_down()


def test_repeated_setup_and_teardown_cycles(pool):
    pods = [pool.register(p) for p in (Greeting(), Greeter(), NameAppender())]

    for _ in range(3):
        pool.set_up(Context.background())
        assert pods[1].greeting == "Hi! Jack!"
        pool.tear_down()
        assert pods[0].greeting is None
        assert pods[1].greeting is None
        assert pods[2].greeting is None


class Number(BasePod):
    number: Annotated[int, Export()]

    def set_up(self, ctx):
        self.number = 42


class NumberReader(BasePod):
    number: Annotated[int, Import()]


def test_import_by_type_receives_exported_value(pool):
    pool.register(Number())
    reader = pool.register(NumberReader())

    pool.set_up()

    assert reader.number == 42


class Letters(BasePod):
    letters: Annotated[str, Export("letters")]

    def set_up(self, ctx):
        self.letters = "-"


class LowAppender(BasePod):
    letters: Annotated[Ref[str], Filter("letters", "append", 0)]

    def __init__(self, letter):
        self.letter = letter

    def append(self, ctx):
        self.letters.value += self.letter


class HighAppender(LowAppender):
    letters: Annotated[Ref[str], Filter("letters", "append", 5)]


class LettersReader(BasePod):
    letters: Annotated[str, Import("letters")]


def test_filters_run_by_descending_priority_then_registration_order(pool):
    pool.register(LowAppender("a"))
    pool.register(Letters())
    pool.register(HighAppender("b"))
    reader = pool.register(LettersReader())
    pool.register(LowAppender("c"))

    pool.set_up()
    assert reader.letters == "-bac"
    pool.tear_down()

    pool.set_up()
    assert reader.letters == "-bac"


class SelfFiltering(BasePod):
    value: Annotated[int, Export()]
    doubler: Annotated[Ref[int], Filter("", "double", 0)]

    def set_up(self, ctx):
        self.value = 21

    def double(self, ctx):
        self.doubler.value *= 2


def test_filter_on_own_export_runs_without_cycle(pool):
    pod = pool.register(SelfFiltering())
    reader = pool.register(NumberReader())

    pool.set_up()

    assert pod.value == 42
    assert reader.number == 42


class MissingTarget(BasePod):
    foo: Annotated[Ref[int], Filter("nowhere", "modify", 0)]

    def set_up(self, ctx):
        raise AssertionError("must not be set up")

    def modify(self, ctx):
        pass


def test_filter_on_unknown_export_fails_and_tear_down_is_noop(pool):
    pool.register(Greeting())
    pod = pool.register(MissingTarget())

    with pytest.raises(BadFilterEntry, match="export entry not found by ref id"):
        pool.set_up()

    pool.tear_down()
    assert vars(pod) == {}


def test_tear_down_before_set_up_is_noop(pool):
    greeting = pool.register(Greeting())

    pool.tear_down()

    assert vars(greeting) == {}


class Tracked(BasePod):
    def __init__(self, events):
        self.events = events

    def set_up(self, ctx):
        self.events.append(("set_up", type(self).__name__))

    def tear_down(self):
        self.events.append(("tear_down", type(self).__name__))


class CheckingConsumer(Tracked):
    foo: Annotated[int, Import()]

    def set_up(self, ctx):
        ctx.raise_if_cancelled()
        super().set_up(ctx)


class FooProducer(Tracked):
    bar: Annotated[str, Import()]
    foo: Annotated[int, Export()]


class BarProducer(Tracked):
    baz: Annotated[float, Import()]
    bar: Annotated[str, Export()]


class BazProducer(Tracked):
    baz: Annotated[float, Export()]


def test_cancelled_context_rolls_back_completed_pods(pool):
    events = []
    consumer = pool.register(CheckingConsumer(events))
    for pod_class in (FooProducer, BarProducer, BazProducer):
        pool.register(pod_class(events))

    ctx, cancel = Context.background().with_cancel()
    cancel()

    with pytest.raises(SetupFailed) as excinfo:
        pool.set_up(ctx)

    assert isinstance(excinfo.value.__cause__, Cancelled)
    assert excinfo.value.pod.endswith("CheckingConsumer")
    assert events == [
        ("set_up", "BazProducer"),
        ("set_up", "BarProducer"),
        ("set_up", "FooProducer"),
        ("tear_down", "FooProducer"),
        ("tear_down", "BarProducer"),
        ("tear_down", "BazProducer"),
    ]
    assert consumer.foo is None
    assert pool.order == []


class CheckingFilter(Tracked):
    foo: Annotated[Ref[int], Filter("", "modify_foo", 0)]

    def modify_foo(self, ctx):
        ctx.raise_if_cancelled()


def test_cancelled_filter_rolls_back_including_its_export_owner(pool):
    events = []
    for pod_class in (CheckingFilter, FooProducer, BarProducer, BazProducer):
        pool.register(pod_class(events))

    ctx, cancel = Context.background().with_cancel()
    cancel()

    with pytest.raises(FilterFailed) as excinfo:
        pool.set_up(ctx)

    assert isinstance(excinfo.value.__cause__, Cancelled)
    assert excinfo.value.filter_entry_path.endswith("CheckingFilter.foo")
    assert events == [
        ("set_up", "CheckingFilter"),
        ("set_up", "BazProducer"),
        ("set_up", "BarProducer"),
        ("set_up", "FooProducer"),
        ("tear_down", "FooProducer"),
        ("tear_down", "BarProducer"),
        ("tear_down", "BazProducer"),
        ("tear_down", "CheckingFilter"),
    ]


class FailingTearDown(Greeting):
    def tear_down(self):
        raise RuntimeError("cannot close")


def test_tear_down_failures_are_logged_not_raised(pool, caplog):
    greeting = pool.register(FailingTearDown())
    greeter = pool.register(Greeter())
    pool.set_up()

    with caplog.at_level(logging.ERROR, logger="podpool"):
        pool.tear_down()

    assert "tear_down of pod" in caplog.text
    assert greeting.greeting is None
    assert greeter.greeting is None


def test_running_tears_down_when_block_raises(pool):
    greeter = pool.register(Greeter())
    pool.register(Greeting())

    with pytest.raises(KeyError):
        with pool.running():
            assert greeter.greeting == "Hi!"
            raise KeyError("boom")

    assert greeter.greeting is None


def test_pods_are_listed_in_registration_order(pool):
    greeter = pool.register(Greeter())
    greeting = pool.register(Greeting())

    assert pool.pods == [greeter, greeting]
    pool.set_up()
    assert pool.order == [greeting, greeter]


def test_second_tear_down_runs_hooks_again_in_reverse(pool):
    events = []
    for pod_class in (FooProducer, BarProducer, BazProducer):
        pool.register(pod_class(events))
    pool.set_up()
    del events[:]

    pool.tear_down()
    pool.tear_down()

    assert events == [
        ("tear_down", "FooProducer"),
        ("tear_down", "BarProducer"),
        ("tear_down", "BazProducer"),
    ] * 2
    assert pool.pods[0].foo is None


class InterruptingFilter(Tracked):
    foo: Annotated[Ref[int], Filter("", "modify_foo", 0)]

    def modify_foo(self, ctx):
        raise KeyboardInterrupt


class FooOnly(Tracked):
    foo: Annotated[int, Export()]

    def set_up(self, ctx):
        super().set_up(ctx)
        self.foo = 1


def test_interrupted_filter_tears_down_its_export_owner(pool):
    events = []
    interrupting = pool.register(InterruptingFilter(events))
    producer = pool.register(FooOnly(events))

    with pytest.raises(KeyboardInterrupt):
        pool.set_up()

    assert events == [
        ("set_up", "InterruptingFilter"),
        ("set_up", "FooOnly"),
        ("tear_down", "FooOnly"),
        ("tear_down", "InterruptingFilter"),
    ]
    assert producer.foo is None
    assert interrupting.foo is None
    assert pool.order == []


class ReadOnlyGreeter(BasePod):
    greeting: Annotated[str, Import("the_greeting")] = property(lambda self: "fixed")


def test_unassignable_import_fails_setup_and_rolls_back(pool):
    greeting = pool.register(Greeting())
    pool.register(ReadOnlyGreeter())

    with pytest.raises(SetupFailed, match="import assignment failed") as excinfo:
        pool.set_up()

    assert isinstance(excinfo.value.__cause__, AttributeError)
    assert excinfo.value.import_entry_path.endswith("ReadOnlyGreeter.greeting")
    assert greeting.greeting is None


class ReadOnlyGreeting(Tracked):
    greeting: Annotated[str, Export("the_greeting")] = property(lambda self: "fixed")


def test_field_reset_failure_is_logged_and_teardown_continues(pool, caplog):
    events = []
    pool.register(ReadOnlyGreeting(events))
    greeter = pool.register(Greeter())
    tracked = pool.register(BazProducer(events))
    pool.set_up()
    assert greeter.greeting == "fixed"

    with caplog.at_level(logging.ERROR, logger="podpool"):
        pool.tear_down()

    assert "Resetting" in caplog.text
    assert greeter.greeting is None
    assert tracked.baz is None
    assert ("tear_down", "ReadOnlyGreeting") in events
    assert ("tear_down", "BazProducer") in events
