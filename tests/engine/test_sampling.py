import math

import pytest

torch = pytest.importorskip("torch", reason="torch not installed")

from chatpipe.engine.sampling import LogitsProcessor, apply_repeat_penalty, top_p_filter


def test_repeat_penalty_identity_at_one():
    logits = torch.tensor([2.0, -1.0, 0.5, 3.0])
    out = apply_repeat_penalty(logits, 1.0, [0, 1, 3])
    assert torch.equal(out, logits)


def test_repeat_penalty_lowers_seen_scores():
    logits = torch.tensor([2.0, -1.0, 0.5, 3.0])
    out = apply_repeat_penalty(logits, 1.5, [0, 1])
    assert out[0].item() == pytest.approx(2.0 / 1.5)
    assert out[1].item() == pytest.approx(-1.5)
    # Unseen tokens untouched.
    assert out[2].item() == pytest.approx(0.5)
    assert out[3].item() == pytest.approx(3.0)
    # Input is not modified.
    assert logits[0].item() == pytest.approx(2.0)


def test_repeat_penalty_compounds_with_occurrences():
    logits = torch.tensor([4.0, -2.0])
    out = apply_repeat_penalty(logits, 2.0, [0, 0, 0, 1, 1])
    assert out[0].item() == pytest.approx(4.0 / 8.0)
    assert out[1].item() == pytest.approx(-8.0)


def test_repeat_penalty_is_monotone_in_penalty():
    logits = torch.tensor([3.0, -3.0, 1.0])
    context = [0, 1, 2]
    prev = logits
    for penalty in (1.1, 1.3, 2.0, 4.0):
        out = apply_repeat_penalty(logits, penalty, context)
        assert torch.all(out < prev)
        prev = out


def test_repeat_penalty_pushes_a_zero_score_below_zero():
    out = apply_repeat_penalty(torch.tensor([0.0, 1.0]), 2.0, [0])
    assert out[0].item() < 0.0
    assert out[1].item() == 1.0


@pytest.mark.parametrize("dtype", [torch.float16, torch.bfloat16, torch.float64])
def test_repeat_penalty_zero_score_in_low_and_high_precision(dtype):
    out = apply_repeat_penalty(torch.zeros(3, dtype=dtype), 1.1, [1])
    assert out.dtype == dtype
    assert out[1].item() < 0.0
    assert out[0].item() == 0.0


def test_repeat_penalty_ignores_out_of_vocab_ids():
    logits = torch.tensor([1.0, 1.0])
    out = apply_repeat_penalty(logits, 2.0, [7, -1])
    assert torch.equal(out, logits)


def test_greedy_is_argmax_and_deterministic():
    logits = torch.tensor([0.1, 5.0, 0.3, 4.9])
    a = LogitsProcessor(seed=1, temperature=0.0)
    b = LogitsProcessor(seed=2, temperature=0.0)
    assert a.greedy
    assert [a.sample(logits) for _ in range(5)] == [1] * 5
    assert b.sample(logits) == 1


def test_same_seed_same_draws():
    logits = torch.randn(50, generator=torch.Generator().manual_seed(0))
    a = LogitsProcessor(seed=299792458, temperature=1.0)
    b = LogitsProcessor(seed=299792458, temperature=1.0)
    assert [a.sample(logits) for _ in range(20)] == [b.sample(logits) for _ in range(20)]


def test_sampling_fp16_extreme_logits_stay_finite():
    logits = torch.tensor([10000.0, -10000.0, 0.0], dtype=torch.float16)
    tok = LogitsProcessor(seed=0, temperature=0.1).sample(logits)
    assert tok == 0


def test_sampling_falls_back_to_argmax_on_nan():
    logits = torch.tensor([float("nan")] * 3)
    assert LogitsProcessor(seed=0, temperature=0.7).sample(logits) == 0


def test_top_p_keeps_smallest_prefix_reaching_mass():
    probs = torch.tensor([0.1, 0.5, 0.3, 0.1])
    out = top_p_filter(probs, 0.7)
    assert out.tolist() == pytest.approx([0.0, 0.5, 0.3, 0.0])


def test_top_p_always_keeps_top_token():
    probs = torch.tensor([0.05, 0.9, 0.05])
    out = top_p_filter(probs, 0.01)
    assert out.tolist() == pytest.approx([0.0, 0.9, 0.0])


def test_top_p_sampling_never_picks_filtered_tokens():
    logits = torch.log(torch.tensor([0.6, 0.3, 0.05, 0.05]))
    proc = LogitsProcessor(seed=3, temperature=1.0, top_p=0.8)
    draws = {proc.sample(logits) for _ in range(200)}
    assert draws <= {0, 1}


def test_invalid_processor_arguments():
    with pytest.raises(ValueError):
        LogitsProcessor(seed=0, temperature=-1.0)
    with pytest.raises(ValueError):
        LogitsProcessor(seed=0, temperature=1.0, top_p=math.inf)
