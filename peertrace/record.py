"""Storage for the updates and stats of one traced peer connection."""
import datetime
import json

# Oldest points are shifted out past this size
MAX_STATS_DATA_POINT_BUFFER_SIZE = 1000


class TimelineDataSeries:
    """Ordered (time, value) pairs, assumed to arrive in chronological order."""

    def __init__(self, max_points=MAX_STATS_DATA_POINT_BUFFER_SIZE):
        self.max_points = max_points
        self.points = []

    def add_point(self, time, value):
        self.points.append((time, value))
        if len(self.points) > self.max_points:
            self.points.pop(0)

    def __len__(self):
        return len(self.points)

    def to_json(self):
        if not self.points:
            return {}
        return {
            "startTime": self.points[0][0],
            "endTime": self.points[-1][0],
            "values": json.dumps([value for _, value in self.points]),
        }


class PeerConnectionRecord:
    def __init__(self):
        self.record = {
            "pid": -1,
            "constraints": {},
            "rtcConfiguration": [],
            "stats": {},
            "updateLog": [],
            "url": "",
        }

    def initialize(self, pid, url, rtc_configuration, constraints):
        self.record["pid"] = pid
        self.record["url"] = url
        self.record["rtcConfiguration"] = rtc_configuration
        self.record["constraints"] = constraints

    def reset_stats(self):
        self.record["stats"] = {}

    def get_data_series(self, series_id):
        return self.record["stats"].get(series_id)

    def set_data_series(self, series_id, series):
        self.record["stats"][series_id] = series

    @property
    def update_log(self):
        return self.record["updateLog"]

    def add_update(self, update):
        """update carries "time" (epoch milliseconds), "type" and "value"."""
        time = datetime.datetime.fromtimestamp(float(update["time"]) / 1000)
        self.record["updateLog"].append({
            "time": time.isoformat(sep=" ", timespec="milliseconds"),
            "type": update["type"],
            "value": update.get("value"),
        })

    def to_json(self):
        data = dict(self.record)
        data["stats"] = {k: v.to_json() for k, v in self.record["stats"].items()}
        return data
