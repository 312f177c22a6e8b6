"""Tests for manifest and index file parsing."""

import json

import pytest

from mrf_pipeline.common.exceptions import IndexParseError, ManifestParseError
from mrf_pipeline.sources.schemas import parse_index_file, parse_manifest


class TestParseManifest:
    def test_blobs(self):
        body = json.dumps(
            {
                "blobs": [
                    {
                        "name": "2025-01-01_A_index.json",
                        "downloadUrl": "https://x/a.json",
                        "size": 10,
                        "extra": "ignored",
                    }
                ]
            }
        ).encode()

        manifest = parse_manifest(body)

        assert len(manifest.blobs) == 1
        assert manifest.blobs[0].download_url == "https://x/a.json"
        assert manifest.blobs[0].size == 10

    def test_missing_blobs_is_empty(self):
        assert parse_manifest(b"{}").blobs == []

    @pytest.mark.parametrize(
        "body",
        [
            b"not json",
            b'{"blobs": [{"name": "a"}]}',
            b'{"blobs": [{"name": "a", "downloadUrl": ""}]}',
            b'{"blobs": "nope"}',
        ],
    )
    def test_malformed(self, body):
        with pytest.raises(ManifestParseError):
            parse_manifest(body)


class TestParseIndexFile:
    def test_reporting_structures(self, index_payload):
        body = json.dumps(
            index_payload(["https://x/in1.json.gz"], allowed_amount=["https://x/aa.json"])
        ).encode()

        index = parse_index_file(body)

        assert index.reporting_entity_name == "Test Health Plan"
        structure = index.reporting_structure[0]
        assert structure.in_network_files[0].location == "https://x/in1.json.gz"
        assert structure.allowed_amount_files[0].location == "https://x/aa.json"

    def test_single_allowed_amount_file(self):
        body = json.dumps(
            {
                "reporting_entity_name": "E",
                "reporting_entity_type": "T",
                "reporting_structure": [
                    {"allowed_amount_file": {"location": "https://x/aa.json"}}
                ],
            }
        ).encode()

        structure = parse_index_file(body).reporting_structure[0]

        assert structure.allowed_amount_file.location == "https://x/aa.json"
        assert structure.in_network_files is None

    @pytest.mark.parametrize(
        "body",
        [b"{", b"[]", b'{"reporting_structure": []}'],
    )
    def test_malformed(self, body):
        with pytest.raises(IndexParseError):
            parse_index_file(body)
