"""
Trace collector
Registers as the relay consumer and rebuilds per-connection records from the
event stream
"""
import csv
import json
import logging
import time

import websockets

from peertrace.record import PeerConnectionRecord, TimelineDataSeries
from peertrace.relay import CONTROL_MESSAGE

logger = logging.getLogger(__name__)

DESCRIPTION_UPDATES = ("createOfferOnSuccess", "createAnswerOnSuccess", "setLocalDescription", "setRemoteDescription")
REPORT_KEYS = ("id", "type", "timestamp")


def total_to_per_second(series):
    """Rate between the last two points of a cumulative series, 0 until there are two."""
    if len(series) < 2:
        return 0
    (prev_time, prev_value), (last_time, last_value) = series.points[-2:]
    if last_time == prev_time:
        return 0
    return (last_value - prev_value) * 1000 / (last_time - prev_time)


def total_bytes_to_bits_per_second(series):
    return total_to_per_second(series) * 8


# cumulative counter -> (derived series name, conversion)
DATA_CONVERSIONS = {
    "packetsSent": ("packetsSentPerSecond", total_to_per_second),
    "bytesSent": ("bitsSentPerSecond", total_bytes_to_bits_per_second),
    "packetsReceived": ("packetsReceivedPerSecond", total_to_per_second),
    "bytesReceived": ("bitsReceivedPerSecond", total_bytes_to_bits_per_second),
}


def _description_text(value):
    if isinstance(value, dict) and "type" in value and "sdp" in value:
        return f"type: {value['type']}, sdp:\n{value['sdp']}"
    return value


class Collector:
    def __init__(self, url, ssl=None, connect=None):
        self.url = url
        self.ssl = ssl
        self._connect = connect or websockets.connect
        self.records = {}
        self.event_count = 0
        self.rejected = 0

    async def run(self):
        kwargs = {"ssl": self.ssl} if self.ssl is not None else {}
        async with self._connect(self.url, **kwargs) as ws:
            await ws.send(CONTROL_MESSAGE)
            logger.info(f"✓ Registered as consumer on {self.url}")
            async for message in ws:
                self.ingest(message)

    def ingest(self, raw):
        if isinstance(raw, (bytes, bytearray)):
            raw = bytes(raw).decode("utf-8", errors="replace")
        try:
            event = json.loads(raw)
        except json.JSONDecodeError as e:
            self.rejected += 1
            logger.debug(f"Ignoring malformed event: {e}")
            return False
        if not isinstance(event, dict) or "method" not in event or "id" not in event:
            self.rejected += 1
            logger.debug(f"Ignoring payload that is not a trace event: {raw[:100]}")
            return False
        self.handle(event)
        return True

    def record_for(self, connection_id):
        if connection_id not in self.records:
            self.records[connection_id] = PeerConnectionRecord()
        return self.records[connection_id]

    def handle(self, event, now=None):
        method = event["method"]
        args = event.get("args")
        record = self.record_for(event["id"])
        time_ms = now if now is not None else time.time() * 1000
        self.event_count += 1

        if method == "create":
            call = args if isinstance(args, dict) else {}
            positional = call.get("args") or []
            keywords = dict(call.get("kwargs") or {})
            configuration = positional[0] if positional else keywords.pop("configuration", None)
            record.initialize(-1, self.url, configuration, keywords)
        elif method == "getStats":
            self.add_stats(record, args, time_ms)
        else:
            if method in DESCRIPTION_UPDATES:
                args = _description_text(args)
            record.add_update({"time": time_ms, "type": method, "value": args})

    def add_stats(self, record, reports, time_ms):
        if not isinstance(reports, dict):
            return
        for report_id, report in reports.items():
            if not isinstance(report, dict):
                continue
            for stat, value in report.items():
                if stat in REPORT_KEYS or isinstance(value, bool) or not isinstance(value, (int, float)):
                    continue
                series = self._series(record, f"{report_id}-{stat}")
                series.add_point(time_ms, value)
                if stat in DATA_CONVERSIONS:
                    converted_name, convert = DATA_CONVERSIONS[stat]
                    converted = self._series(record, f"{report_id}-{converted_name}")
                    converted.add_point(time_ms, convert(series))

    def _series(self, record, series_id):
        series = record.get_data_series(series_id)
        if series is None:
            series = TimelineDataSeries()
            record.set_data_series(series_id, series)
        return series

    def to_json(self):
        return {pc_id: record.to_json() for pc_id, record in self.records.items()}

    def dump(self, path):
        with open(path, "w") as f:
            json.dump(self.to_json(), f, indent=2)
        logger.info(f"✓ Dumped {len(self.records)} peer connection(s) to {path}")

    def export_csv(self, path):
        with open(path, "w", newline="") as f:
            writer = csv.DictWriter(f, fieldnames=["connection", "series", "time", "value"])
            writer.writeheader()
            for pc_id, record in self.records.items():
                for series_id, series in record.record["stats"].items():
                    for point_time, value in series.points:
                        writer.writerow({
                            "connection": pc_id,
                            "series": series_id,
                            "time": point_time,
                            "value": value,
                        })
        logger.info(f"✓ Stats series saved to {path}")

    def print_summary(self):
        logger.info("=" * 60)
        logger.info("TRACE SUMMARY")
        logger.info("=" * 60)
        logger.info(f"Events received:    {self.event_count}")
        logger.info(f"Malformed payloads: {self.rejected}")
        for pc_id, record in self.records.items():
            logger.info(f"  {pc_id}: {len(record.update_log)} updates, {len(record.record['stats'])} stats series")
        logger.info("=" * 60)
