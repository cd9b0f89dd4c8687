import random

from guessr.services.cards.supply import OVERSIZE_FACTOR, SupplyQueue


def _queue(sources, scheduler, **kwargs):
    kwargs.setdefault('batch_size', 4)
    kwargs.setdefault('low_water', 2)
    kwargs.setdefault('rng', random.Random(7))
    return SupplyQueue(sources, scheduler, **kwargs)


def _drain(queue):
    taken = []
    while len(queue):
        taken.append(queue.take())
    return taken


def test_take_refills_empty_queue_and_requests_oversized_batch(scheduler, stub_source):
    primary = stub_source('primary', endless=True)
    queue = _queue([primary], scheduler)

    card = queue.take()

    assert card is not None
    assert primary.calls == [4 * OVERSIZE_FACTOR]
    # Oversized batch is trimmed back to batch_size, one card handed out
    assert len(queue) == 3


def test_duplicates_are_dropped_within_batch_queue_and_session(scheduler, stub_source, make_card):
    a, b, c, d = (make_card(n) for n in range(4))
    primary = stub_source('primary', batches=[[a, a, b], [b, c], [a, c, d]])
    queue = _queue([primary], scheduler)

    queue.ensure(4, wait=True)
    assert sorted(x.image_url for x in queue.peek(10)) == sorted([a.image_url, b.image_url])

    queue.ensure(4, wait=True)
    assert sorted(x.image_url for x in queue.peek(10)) == sorted([a.image_url, b.image_url, c.image_url])

    _drain(queue)
    queue.ensure(1, wait=True)
    # a and c were already seen this session
    assert [x.image_url for x in queue.peek(10)] == [d.image_url]


def test_never_yields_same_image_twice_in_a_session(scheduler, stub_source):
    queue = _queue([stub_source('primary', endless=True)], scheduler)
    urls = [queue.take().image_url for _ in range(25)]
    assert len(urls) == len(set(urls))


def test_batch_is_shuffled_permutation(scheduler, stub_source, make_card):
    batch = [make_card(n) for n in range(10)]
    queue = _queue([stub_source('primary', batches=[list(batch)])], scheduler, batch_size=10)

    queue.ensure(1, wait=True)
    queued = queue.peek(10)

    assert sorted(c.image_url for c in queued) == sorted(c.image_url for c in batch)
    expected = list(batch)
    random.Random(7).shuffle(expected)
    assert queued == expected


def test_cards_missing_image_or_name_are_rejected(scheduler, stub_source, make_card):
    good = make_card(1)
    nameless = make_card(2, name='')
    primary = stub_source('primary', batches=[[good, nameless]])
    queue = _queue([primary], scheduler)

    queue.ensure(1, wait=True)

    assert queue.peek(5) == [good]


def test_falls_back_to_secondary_when_primary_fails(scheduler, stub_source):
    primary = stub_source('primary', error='HTTP 503')
    secondary = stub_source('secondary', endless=True)
    queue = _queue([primary, secondary], scheduler)

    assert queue.take() is not None
    assert len(primary.calls) == 1
    assert len(secondary.calls) == 1


def test_falls_back_to_secondary_when_primary_has_nothing_new(scheduler, stub_source, make_card):
    seen = make_card(1)
    primary = stub_source('primary', batches=[[seen], [seen]])
    secondary = stub_source('secondary', batches=[[make_card(2)]])
    queue = _queue([primary, secondary], scheduler)

    assert queue.take() == seen
    assert queue.take() == make_card(2)


def test_attempts_per_source_are_bounded(scheduler, stub_source, make_card):
    primary = stub_source('primary', error='timeout')
    queue = _queue([primary], scheduler, attempts_per_source=3, fallback_cards=[make_card(9)])

    assert queue.take() == make_card(9)
    assert len(primary.calls) == 3


def test_static_pool_is_last_resort_and_repeats_when_exhausted(scheduler, stub_source, make_card):
    pool = [make_card(1), make_card(2)]
    queue = _queue([stub_source('primary'), stub_source('secondary', error='down')], scheduler, fallback_cards=pool)

    first = {queue.take().image_url, queue.take().image_url}
    assert first == {c.image_url for c in pool}
    # Pool already seen this session: served again rather than stalling
    assert queue.take() is not None


def test_take_returns_none_when_everything_is_empty(scheduler, stub_source):
    queue = _queue([stub_source('primary'), stub_source('secondary', error='down')], scheduler)
    assert queue.take() is None


def test_background_top_up_does_not_block(scheduler, stub_source):
    scheduler.defer_spawn = True
    primary = stub_source('primary', endless=True)
    queue = _queue([primary], scheduler)
    queue.ensure(4, wait=True)
    queue.take()
    queue.take()
    queue.take()

    queue.top_up()
    queue.top_up()
    assert len(queue) == 1
    # Only one refill may be in flight
    assert len(scheduler.tasks) == 1

    scheduler.run_tasks()
    assert len(queue) == 5
    assert len(primary.calls) == 2


def test_top_up_is_noop_above_low_water(scheduler, stub_source):
    primary = stub_source('primary', endless=True)
    queue = _queue([primary], scheduler)
    queue.ensure(4, wait=True)
    queue.top_up()
    assert len(primary.calls) == 1


def test_close_discards_cards_and_late_refills(scheduler, stub_source):
    scheduler.defer_spawn = True
    queue = _queue([stub_source('primary', endless=True)], scheduler)
    queue.top_up()
    queue.close()
    scheduler.run_tasks()

    assert queue.closed
    assert len(queue) == 0
    assert queue.take() is None
