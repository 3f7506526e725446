from mcqgen.services.partitioner import (
    ContentPartitioner,
    ContentUnit,
    estimate_question_count,
    fact_density,
    unit_weight,
)


def _unit(weight, text="x" * 200, page=None):
    return ContentUnit(text=text, first_page=page, last_page=page, weight=weight)


def _paged(*bodies):
    return "\n".join(f"--- Page {i + 1} ---\n{body}\n" for i, body in enumerate(bodies))


def test_partition_splits_on_page_markers_and_drops_thin_pages():
    text = _paged("Alpha facts. " * 20, "tiny", "Gamma facts. " * 20)
    units = ContentPartitioner().partition(text)

    assert [u.first_page for u in units] == [1, 3]
    assert units[0].label == "Page 1"
    assert units[0].text.startswith("--- Page 1 ---")


def test_partition_falls_back_to_character_chunks():
    text = "plain text without any page structure " * 100
    units = ContentPartitioner(chunk_size=1000).partition(text)

    assert len(units) == 4
    assert all(u.first_page is None for u in units)
    assert units[0].label == "Unpaged content"


def test_partition_of_empty_or_tiny_text_is_empty():
    part = ContentPartitioner()
    assert part.partition("") == []
    assert part.partition("too short") == []


def test_weight_adds_fact_density_to_length():
    dense = "In 1950 the Constitution of India came into force under Article 394 and the Government Act."
    plain = "x" * len(dense)
    assert fact_density(dense) > 0
    assert fact_density(plain) == 0
    assert unit_weight(dense) > unit_weight(plain)


def test_quota_follows_weights_and_sums_to_target():
    part = ContentPartitioner()
    units = [_unit(100), _unit(200), _unit(300)]
    assert part.distribute_quota(units, 12) == [2, 4, 6]


def test_quota_always_sums_exactly_with_floor_of_one():
    part = ContentPartitioner()
    weight_sets = [[1, 1, 1], [5, 1000, 3, 7], [10] * 9, [0, 0, 0], [1, 99999]]
    for weights in weight_sets:
        units = [_unit(w) for w in weights]
        for target in (len(units), len(units) + 1, 17, 130):
            quotas = part.distribute_quota(units, target)
            assert sum(quotas) == target, (weights, target, quotas)
            assert min(quotas) >= 1, (weights, target, quotas)


def test_quota_smaller_than_unit_count_goes_to_heaviest_units():
    part = ContentPartitioner()
    units = [_unit(10), _unit(300), _unit(20), _unit(200)]
    assert part.distribute_quota(units, 2) == [0, 1, 0, 1]
    assert part.distribute_quota([], 5) == []


def test_batches_pack_consecutive_units_within_char_budget():
    part = ContentPartitioner()
    units = [_unit(1, "a" * 400, page=1), _unit(1, "b" * 400, page=2), _unit(1, "c" * 400, page=3)]
    batches = part.group_into_batches(units, [2, 3, 4], max_chars=900)

    assert [b.requested_count for b in batches] == [5, 4]
    assert batches[0].label == "Pages 1-2"
    assert batches[1].label == "Page 3"
    assert [b.index for b in batches] == [0, 1]


def test_oversized_unit_becomes_its_own_batch():
    part = ContentPartitioner()
    units = [_unit(1, "a" * 100, page=1), _unit(1, "b" * 5000, page=2), _unit(1, "c" * 100, page=3)]
    batches = part.group_into_batches(units, [1, 1, 1], max_chars=1000)

    assert [b.first_page for b in batches] == [1, 2, 3]
    assert len(batches[1].text) == 5000


def test_estimate_is_clamped():
    assert estimate_question_count("") == 20
    long_text = _paged(*["The Planning Commission was set up in 1950 under the Ministry. " * 40] * 60)
    assert estimate_question_count(long_text) == 500


def test_partition_keeps_long_text_before_first_marker():
    intro = "Preface on the Finance Commission and Article 280. " * 48
    text = intro + "\n" + _paged("Alpha facts. " * 20)
    part = ContentPartitioner()
    units = part.partition(text)

    assert [u.first_page for u in units] == [None, 1]
    assert units[0].text.startswith("Preface")
    assert len(units[0].text.strip()) >= len(intro.strip())
    assert units[0].label == "Unpaged content"

    batches = part.group_into_batches(units, part.distribute_quota(units, 6), max_chars=35000)
    assert len(batches) == 1
    assert batches[0].requested_count == 6
    assert batches[0].label == "Opening text to Page 1"


def test_short_text_before_first_marker_is_dropped():
    text = "Extracted pages:\n" + _paged("Alpha facts. " * 20)
    units = ContentPartitioner().partition(text)
    assert [u.first_page for u in units] == [1]
