"""
Data recorder for the vehicle controller.
Records measurement, target, actuator output and diagnostic report per tick.
"""

import h5py
import numpy as np
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, List
from datetime import datetime

from ackermann_control.vehicle_controller import Measurement, Output, Report, Status, TargetRequest

logger = logging.getLogger(__name__)

# Status is stored as an index into this list.
STATUS_CODES = [status.value for status in Status]

SCALAR_DATASETS = {
    "time": np.float64,
    "measurement/speed": np.float64,
    "measurement/accel": np.float64,
    "target/speed": np.float64,
    "target/accel": np.float64,
    "target/steering_angle": np.float64,
    "output/throttle": np.float32,
    "output/brake": np.float32,
    "output/steer": np.float32,
    "output/reverse": np.bool_,
    "output/hand_brake": np.bool_,
    "report/status": np.int8,
    "report/setpoint_accel": np.float64,
    "report/target_pedal": np.float64,
    "report/delta_accel": np.float64,
    "report/delta_pedal": np.float64,
    "report/setpoint_speed": np.float64,
    "report/throttle_lower_border": np.float64,
    "report/brake_upper_border": np.float64,
    "report/speed_p_term": np.float64,
    "report/speed_i_term": np.float64,
    "report/speed_d_term": np.float64,
    "report/pedal_p_term": np.float64,
    "report/pedal_i_term": np.float64,
    "report/pedal_d_term": np.float64,
}


@dataclass
class ControlFrame:
    """One controller tick."""
    measurement: Measurement
    target: TargetRequest
    output: Output
    report: Report

    def to_row(self) -> dict:
        return {
            "time": self.measurement.elapsed_time,
            "measurement/speed": self.measurement.speed,
            "measurement/accel": self.measurement.accel,
            "target/speed": self.target.speed,
            "target/accel": self.target.accel,
            "target/steering_angle": self.target.steering_angle,
            "output/throttle": self.output.throttle,
            "output/brake": self.output.brake,
            "output/steer": self.output.steer,
            "output/reverse": self.output.reverse,
            "output/hand_brake": self.output.hand_brake,
            "report/status": STATUS_CODES.index(self.report.status.value),
            "report/setpoint_accel": self.report.setpoint_accel,
            "report/target_pedal": self.report.target_pedal,
            "report/delta_accel": self.report.delta_accel,
            "report/delta_pedal": self.report.delta_pedal,
            "report/setpoint_speed": self.report.setpoint_speed,
            "report/throttle_lower_border": self.report.throttle_lower_border,
            "report/brake_upper_border": self.report.brake_upper_border,
            "report/speed_p_term": self.report.speed_p_term,
            "report/speed_i_term": self.report.speed_i_term,
            "report/speed_d_term": self.report.speed_d_term,
            "report/pedal_p_term": self.report.pedal_p_term,
            "report/pedal_i_term": self.report.pedal_i_term,
            "report/pedal_d_term": self.report.pedal_d_term,
        }


class ControlRecorder:
    """Records controller ticks to HDF5 format."""

    def __init__(self, output_dir: str, recording_name: Optional[str] = None,
                 flush_every: int = 100, metadata: Optional[dict] = None):
        """
        Initialize control recorder.

        Args:
            output_dir: Directory to save recordings
            recording_name: Name for this recording (default: timestamp)
            flush_every: Number of buffered frames before writing to disk
            metadata: Extra metadata stored with the recording
        """
        self.output_dir = Path(output_dir)
        self.output_dir.mkdir(parents=True, exist_ok=True)

        if recording_name is None:
            recording_name = f"control_{datetime.now().strftime('%Y%m%d_%H%M%S')}"

        self.recording_name = recording_name
        self.output_file = self.output_dir / f"{recording_name}.h5"
        self.flush_every = flush_every

        self.h5_file = h5py.File(self.output_file, 'w')
        try:
            self._create_datasets()
        except Exception:
            self.h5_file.close()
            raise

        self.frame_buffer: List[ControlFrame] = []
        self.frame_count = 0

        self.metadata = {
            "recording_start_time": datetime.now().isoformat(),
            "recording_name": recording_name,
            "status_codes": STATUS_CODES,
        }
        if metadata:
            self.metadata.update(metadata)

    def _create_datasets(self):
        """Create extensible HDF5 datasets."""
        for name, dtype in SCALAR_DATASETS.items():
            self.h5_file.create_dataset(
                name,
                shape=(0,),
                maxshape=(None,),
                dtype=dtype,
                compression="gzip",
                compression_opts=4,
                chunks=(max(self.flush_every, 1),),
            )

    def record(self, measurement: Measurement, target: TargetRequest,
               output: Output, report: Report):
        """Record one controller tick."""
        frame = ControlFrame(
            measurement=Measurement(**vars(measurement)),
            target=TargetRequest(**vars(target)),
            output=output,
            report=report,
        )
        self.frame_buffer.append(frame)
        self.frame_count += 1

        if len(self.frame_buffer) >= self.flush_every:
            self.flush()

    def flush(self):
        """Write buffered frames to disk."""
        if not self.frame_buffer:
            return
        frames = self.frame_buffer
        self.frame_buffer = []

        rows = [frame.to_row() for frame in frames]
        for name, dtype in SCALAR_DATASETS.items():
            dataset = self.h5_file[name]
            current_size = dataset.shape[0]
            new_size = current_size + len(rows)
            dataset.resize((new_size,))
            dataset[current_size:new_size] = np.asarray([row[name] for row in rows], dtype=dtype)
        self.h5_file.flush()
        logger.debug(f"Flushed {len(rows)} frames to {self.output_file}")

    def close(self):
        """Close the recording file."""
        if not self.h5_file:
            return
        self.flush()

        self.metadata["recording_end_time"] = datetime.now().isoformat()
        self.metadata["total_frames"] = self.frame_count
        self.h5_file.attrs["metadata"] = json.dumps(self.metadata, indent=2)

        self.h5_file.close()
        logger.info(f"Recording saved to: {self.output_file}")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False


def load_recording(recording_file: str) -> dict:
    """
    Load a control recording into memory.

    Args:
        recording_file: Path to HDF5 recording file

    Returns:
        Dictionary of dataset name -> numpy array, plus "metadata"
    """
    recording_file = Path(recording_file)
    if not recording_file.exists():
        raise FileNotFoundError(f"Recording file not found: {recording_file}")

    with h5py.File(recording_file, 'r') as h5_file:
        data = {name: h5_file[name][()] for name in SCALAR_DATASETS if name in h5_file}
        if "metadata" in h5_file.attrs:
            data["metadata"] = json.loads(h5_file.attrs["metadata"])
        else:
            data["metadata"] = {}
    return data
