# SPDX-License-Identifier: Apache-2.0
"""
Corpus REST client tests.

Generated clients are exercised against scripted in-process transports
(`tests.mock.transport`) and `httpx.MockTransport`; no network access is
required.
"""
