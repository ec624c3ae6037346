"""Tests for the idempotent calendar upsert engine."""

import uuid
from datetime import date
from decimal import Decimal

import pytest

from calsync.errors import OutcomeKind, ProviderRequestError, SyncValidationError, TransientProviderError
from calsync.models.event_projection import CalendarEventProjection, ProjectionStatus
from calsync.services.calendar_upsert import (
    AGENCY_ID_PROPERTY,
    EVENT_ID_PROPERTY,
    ORGANIZATION,
    RESOURCE,
    build_event_payload,
)
from fakes import ORG_CALENDAR

RESOURCE_CALENDAR = "nova@group.calendar.google.com"


class TestBuildEventPayload:
    def test_timed_event(self, event, resource, booking_client):
        payload = build_event_payload(event, resource, booking_client, "Asia/Jerusalem")

        assert payload["summary"] == "Summer Gala · DJ Nova"
        assert payload["start"] == {"dateTime": "2026-07-01T20:00:00", "timeZone": "Asia/Jerusalem"}
        assert payload["end"] == {"dateTime": "2026-07-01T23:30:00", "timeZone": "Asia/Jerusalem"}
        assert payload["attendees"] == [
            {"email": "nova.calendar@example.com"},
            {"email": "events@acme.example"},
        ]
        assert payload["guestsCanModify"] is True
        assert payload["extendedProperties"]["private"] == {
            AGENCY_ID_PROPERTY: str(event.agency_id),
            EVENT_ID_PROPERTY: str(event.id),
        }

    def test_description_only_carries_allowed_fields(self, event, resource, booking_client):
        event.amount = Decimal("4500.00")
        payload = build_event_payload(event, resource, booking_client, "Asia/Jerusalem")

        assert payload["description"] == (
            "Business: Summer Gala\nInvoice name: Acme Ltd\nNotes: Bring the long cables"
        )
        assert "4500" not in payload["description"]
        assert "scheduled" not in payload["description"]
        assert str(event.id) not in payload["description"]

    def test_end_before_start_rolls_to_next_day(self, event, resource, booking_client):
        event.event_time = "22:00"
        event.event_time_end = "02:00"

        payload = build_event_payload(event, resource, booking_client, "UTC")

        assert payload["end"]["dateTime"] == "2026-07-02T02:00:00"

    def test_missing_end_defaults_to_one_hour(self, event, resource, booking_client):
        event.event_time_end = None

        payload = build_event_payload(event, resource, booking_client, "UTC")

        assert payload["end"]["dateTime"] == "2026-07-01T21:00:00"

    def test_all_day_event(self, event, resource, booking_client):
        event.event_time = None
        event.event_time_end = None

        payload = build_event_payload(event, resource, booking_client, "UTC")

        assert payload["start"] == {"date": "2026-07-01"}
        assert payload["end"] == {"date": "2026-07-02"}

    def test_malformed_end_time_rejected(self, event, resource, booking_client):
        event.event_time_end = "late"

        with pytest.raises(SyncValidationError, match="late"):
            build_event_payload(event, resource, booking_client, "UTC")

    def test_duplicate_attendees_collapsed(self, event, resource, booking_client):
        booking_client.email = "NOVA.calendar@example.com"

        payload = build_event_payload(event, resource, booking_client, "UTC")

        assert payload["attendees"] == [{"email": "nova.calendar@example.com"}]

    def test_no_attendees_key_without_emails(self, event):
        event.business_name = ""
        payload = build_event_payload(event, None, None, "UTC")

        assert "attendees" not in payload
        assert payload["summary"] == "Event"


class TestUpsertEvent:
    @pytest.mark.asyncio
    async def test_first_upsert_creates_and_records_id(self, services, repos, calendar_client, credential, agency_id, event):
        result = await services.upserts.upsert_event(agency_id, event.id)

        projection = repos.projections.items[event.id]
        assert result.target(ORGANIZATION).action == "created"
        assert projection.organization_calendar_id == ORG_CALENDAR
        assert projection.organization_external_id == "ext-1"
        assert projection.organization_html_link == "https://calendar.example/ext-1"
        assert projection.status == ProjectionStatus.SYNCED
        assert result.outcome().kind == OutcomeKind.OK

    @pytest.mark.asyncio
    async def test_repeated_upserts_never_duplicate(self, services, repos, calendar_client, credential, agency_id, event):
        for _ in range(3):
            await services.upserts.upsert_event(agency_id, event.id)

        assert calendar_client.call_names().count("insert_event") == 1
        assert calendar_client.call_names().count("patch_event") == 2
        assert len(calendar_client.events) == 1
        assert repos.projections.items[event.id].organization_external_id == "ext-1"

    @pytest.mark.asyncio
    async def test_send_invites_maps_to_send_updates(self, services, calendar_client, credential, agency_id, event):
        await services.upserts.upsert_event(agency_id, event.id)
        await services.upserts.upsert_event(agency_id, event.id, send_invites=True)

        assert calendar_client.calls[0][1][2] == "none"
        assert calendar_client.calls[1][1][3] == "all"

    @pytest.mark.asyncio
    async def test_writes_both_calendars(self, services, repos, calendar_client, credential, agency_id, event, resource):
        resource.google_calendar_id = RESOURCE_CALENDAR

        result = await services.upserts.upsert_event(agency_id, event.id)

        projection = repos.projections.items[event.id]
        assert [t.target for t in result.targets] == [ORGANIZATION, RESOURCE]
        assert projection.organization_external_id == "ext-1"
        assert projection.resource_external_id == "ext-2"
        assert projection.resource_calendar_id == RESOURCE_CALENDAR

    @pytest.mark.asyncio
    async def test_resource_failure_does_not_block_organization(
        self, services, repos, calendar_client, credential, agency_id, event, resource
    ):
        resource.google_calendar_id = RESOURCE_CALENDAR
        calendar_client.errors[f"insert_event:{RESOURCE_CALENDAR}"] = ProviderRequestError("forbidden", status=400)

        result = await services.upserts.upsert_event(agency_id, event.id)

        projection = repos.projections.items[event.id]
        assert result.target(ORGANIZATION).succeeded
        assert result.target(RESOURCE).action == "failed"
        assert projection.organization_external_id == "ext-1"
        assert projection.resource_external_id is None
        assert projection.status == ProjectionStatus.SYNCED

    @pytest.mark.asyncio
    async def test_organization_failure_does_not_block_resource(
        self, services, repos, calendar_client, credential, agency_id, event, resource
    ):
        resource.google_calendar_id = RESOURCE_CALENDAR
        calendar_client.errors[f"insert_event:{ORG_CALENDAR}"] = TransientProviderError("backend", status=503)

        result = await services.upserts.upsert_event(agency_id, event.id)

        assert not result.target(ORGANIZATION).succeeded
        assert result.target(RESOURCE).succeeded
        assert repos.projections.items[event.id].resource_external_id == "ext-1"

    @pytest.mark.asyncio
    async def test_failure_keeps_previous_ids(self, services, repos, calendar_client, credential, agency_id, event):
        repos.projections.items[event.id] = CalendarEventProjection(
            event_id=event.id,
            agency_id=agency_id,
            organization_calendar_id=ORG_CALENDAR,
            organization_external_id="ext-known",
            status=ProjectionStatus.SYNCED,
        )
        calendar_client.errors["patch_event"] = TransientProviderError("backend", status=503)

        result = await services.upserts.upsert_event(agency_id, event.id)

        projection = repos.projections.items[event.id]
        assert projection.organization_external_id == "ext-known"
        assert projection.status == ProjectionStatus.ERROR
        assert "backend" in projection.last_error
        assert result.outcome().kind == OutcomeKind.RETRYABLE

    @pytest.mark.asyncio
    async def test_gone_external_event_is_recreated(self, services, repos, calendar_client, credential, agency_id, event):
        repos.projections.items[event.id] = CalendarEventProjection(
            event_id=event.id,
            agency_id=agency_id,
            organization_calendar_id=ORG_CALENDAR,
            organization_external_id="ext-deleted",
            status=ProjectionStatus.SYNCED,
        )

        result = await services.upserts.upsert_event(agency_id, event.id)

        assert calendar_client.call_names() == ["patch_event", "insert_event"]
        assert result.target(ORGANIZATION).stale_id_cleared
        assert repos.projections.items[event.id].organization_external_id == "ext-1"

    @pytest.mark.asyncio
    async def test_stale_id_cleared_even_if_recreate_fails(
        self, services, repos, calendar_client, credential, agency_id, event
    ):
        repos.projections.items[event.id] = CalendarEventProjection(
            event_id=event.id,
            agency_id=agency_id,
            organization_external_id="ext-deleted",
            status=ProjectionStatus.SYNCED,
        )
        calendar_client.errors["insert_event"] = TransientProviderError("backend", status=503)

        await services.upserts.upsert_event(agency_id, event.id)

        projection = repos.projections.items[event.id]
        assert projection.organization_external_id is None
        assert projection.status == ProjectionStatus.ERROR

    @pytest.mark.asyncio
    async def test_fatal_failure_outcome(self, services, calendar_client, credential, agency_id, event):
        calendar_client.errors["insert_event"] = ProviderRequestError("bad request", status=400)

        result = await services.upserts.upsert_event(agency_id, event.id)

        outcome = result.outcome()
        assert outcome.kind == OutcomeKind.FATAL
        assert outcome.error_code == "provider_request_error"

    @pytest.mark.asyncio
    async def test_falls_back_to_default_calendar(self, services, calendar_client, credential, agency_id, event):
        credential.organization_calendar_id = None

        await services.upserts.upsert_event(agency_id, event.id)

        assert calendar_client.calls[0][1][0] == "primary"

    @pytest.mark.asyncio
    async def test_uses_current_access_token(self, services, calendar_client, credential, agency_id, event):
        await services.upserts.upsert_event(agency_id, event.id)
        assert calendar_client.tokens_seen == ["access-token-1"]

    @pytest.mark.asyncio
    async def test_unknown_event(self, services, credential, agency_id):
        with pytest.raises(SyncValidationError):
            await services.upserts.upsert_event(agency_id, uuid.uuid4())

    @pytest.mark.asyncio
    async def test_event_of_other_agency_is_not_found(self, services, credential, event):
        with pytest.raises(SyncValidationError):
            await services.upserts.upsert_event(uuid.uuid4(), event.id)

    @pytest.mark.asyncio
    async def test_event_date_is_used(self, services, calendar_client, credential, agency_id, event):
        event.event_date = date(2026, 12, 31)
        await services.upserts.upsert_event(agency_id, event.id)
        body = calendar_client.calls[0][1][1]
        assert body["start"]["dateTime"].startswith("2026-12-31")

    @pytest.mark.asyncio
    async def test_all_day_event_created_then_renamed_in_place(
        self, services, repos, calendar_client, credential, agency_id, event
    ):
        event.business_name = "Launch Party"
        event.event_date = date(2026, 3, 1)
        event.event_time = None
        event.event_time_end = None

        first = await services.upserts.upsert_event(agency_id, event.id)

        name, (calendar_id, body, _) = calendar_client.calls[-1]
        assert name == "insert_event"
        assert calendar_id == ORG_CALENDAR
        assert body["start"] == {"date": "2026-03-01"}
        assert body["end"] == {"date": "2026-03-02"}
        assert "dateTime" not in body["start"]
        assert "dateTime" not in body["end"]
        external_id = first.target(ORGANIZATION).external_id

        event.business_name = "Launch Party (Updated)"
        second = await services.upserts.upsert_event(agency_id, event.id)

        name, (calendar_id, patched_id, body, _) = calendar_client.calls[-1]
        assert name == "patch_event"
        assert patched_id == external_id
        assert body["summary"].startswith("Launch Party (Updated)")
        assert second.target(ORGANIZATION).external_id == external_id
        assert calendar_client.call_names().count("insert_event") == 1
        assert calendar_client.events[(ORG_CALENDAR, external_id)]["summary"] == body["summary"]

    @pytest.mark.asyncio
    async def test_malformed_event_time_is_validation_error(self, services, calendar_client, credential, agency_id, event):
        event.event_time = "8pm"

        with pytest.raises(SyncValidationError):
            await services.upserts.upsert_event(agency_id, event.id)
        assert calendar_client.calls == []
