"""Tests for anonymization and identity redaction."""

import random

from deliberation.anonymizer import (
    LABEL_ALPHABET,
    REDACTION_TOKEN,
    Anonymizer,
    generate_label,
    redact_identities,
)
from tests.conftest import MODELS, make_response


def test_labels_use_reserved_alphabet():
    for _ in range(50):
        label = generate_label()
        assert len(label) == 6
        assert set(label) <= set(LABEL_ALPHABET)


def test_only_successful_responses_are_labelled():
    responses = [make_response(m) for m in MODELS[:4]]
    responses.append(make_response(MODELS[4], text="", succeeded=False))

    result = Anonymizer().anonymize(responses)

    assert len(result.entries) == 4
    assert len(set(result.labels)) == 4
    assert sorted(result.mapping.values()) == sorted(MODELS[:4])


def test_labels_are_unique_for_large_councils():
    responses = [make_response(f"vendor/model-{i}", text=f"text {i}") for i in range(50)]
    result = Anonymizer().anonymize(responses)
    assert len(set(result.labels)) == 50


def test_labels_do_not_derive_from_model_ids():
    responses = [make_response(m) for m in MODELS[:3]]
    first = Anonymizer().anonymize(responses)
    second = Anonymizer().anonymize(responses)
    assert set(first.labels) != set(second.labels)


def test_entry_text_never_contains_model_ids():
    responses = [
        make_response(MODELS[0], text=f"As {MODELS[0]}, I think {MODELS[1].upper()} is wrong."),
        make_response(MODELS[1]),
        make_response(MODELS[2]),
    ]
    result = Anonymizer().anonymize(responses, identities=MODELS)

    for entry in result.entries:
        for model_id in MODELS:
            assert model_id.lower() not in entry.text.lower()
    assert any(REDACTION_TOKEN in e.text for e in result.entries)


def test_redaction_prefers_longest_identity():
    text = "vendor/model-10 beat vendor/model-1"
    assert redact_identities(text, ["vendor/model-1", "vendor/model-10"]) == (
        f"{REDACTION_TOKEN} beat {REDACTION_TOKEN}"
    )


def test_redaction_can_be_disabled():
    responses = [make_response(m) for m in MODELS[:3]]
    result = Anonymizer(redact=False).anonymize(responses)
    assert any(MODELS[0] in e.text for e in result.entries)


def test_scrub_follows_redaction_setting():
    question = f"Is {MODELS[0]} right?"
    assert Anonymizer().scrub(question, MODELS) == f"Is {REDACTION_TOKEN} right?"
    assert Anonymizer(redact=False).scrub(question, MODELS) == question


def test_presentation_order_is_a_fresh_permutation():
    responses = [make_response(f"vendor/model-{i}", text=f"text {i}") for i in range(8)]
    anonymizer = Anonymizer(rng=random.Random(7))
    result = anonymizer.anonymize(responses)

    orders = {tuple(e.label for e in anonymizer.presentation_order(result.entries)) for _ in range(10)}

    assert len(orders) > 1
    for order in orders:
        assert sorted(order) == sorted(result.labels)
