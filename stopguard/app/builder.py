"""
Pipeline Builder
================

Builder pattern para construir el engine con todas sus dependencias.

Responsabilidad:
- Traducir StopGuardConfig a componentes concretos
- Un componente nuevo por engine (sin singletons)
- Controller sólo usa Builder (no conoce detalles de construcción)
"""
from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Sequence
import importlib
import logging
import time

from ..alerts import Announcer, log_speech_backend
from ..config import StopGuardConfig
from ..detection import CandidateFilter, DetectionPipeline
from ..detection.pipeline import PipelineSink
from ..detection.stabilization import Deduper, StabilityGate
from ..drive import (
    DriveManager,
    DriveStore,
    DriveSync,
    InMemoryDriveStore,
    JsonFileDriveStore,
)
from ..motion import MotionState
from .loop import InferenceRunner, Scheduler

logger = logging.getLogger(__name__)


@dataclass
class Engine:
    """Componentes de un engine ya cableados."""
    pipeline: DetectionPipeline
    motion: MotionState
    drive_manager: DriveManager
    announcer: Announcer
    store: DriveStore
    sync: DriveSync
    inference: Optional[InferenceRunner] = None


class PipelineBuilder:
    """
    Builder para el engine de stop signs.

    Usage:
        builder = PipelineBuilder(config)
        engine = builder.build(scheduler=loop, sinks=[mqtt_sink])
        loop.post(engine.pipeline.process_frame, detections, timestamp)

    Con detection.detector configurado, engine.inference corre el detector
    local sobre frames crudos (engine.inference.submit(frame)).
    """

    def __init__(self, config: StopGuardConfig, clock: Callable[[], float] = time.time):
        self.config = config
        self.clock = clock

    def build_store(self) -> DriveStore:
        drive_config = self.config.drive
        if drive_config.store == 'json':
            logger.info(
                "📁 Drive store: JSON files",
                extra={"component": "builder", "data_dir": drive_config.data_dir}
            )
            return JsonFileDriveStore(drive_config.data_dir)

        logger.info("🧠 Drive store: in-memory", extra={"component": "builder"})
        return InMemoryDriveStore()

    def build_drive_manager(self, store: DriveStore) -> DriveManager:
        sync = DriveSync(store, background=self.config.drive.background_sync)
        return DriveManager(store=store, sync=sync)

    def build_motion(self, scheduler: Scheduler) -> MotionState:
        motion_config = self.config.motion
        return MotionState(
            scheduler=scheduler,
            moving_speed_threshold=motion_config.moving_speed_threshold,
            stopped_speed_threshold=motion_config.stopped_speed_threshold,
            accel_deviation_threshold=motion_config.accel_deviation_threshold,
            required_stop_duration=motion_config.required_stop_duration,
            verification_margin=motion_config.verification_margin,
            accelerometer_available=motion_config.accelerometer_available,
            clock=self.clock,
        )

    def build_announcer(self, speech_backend: Callable[[str], None]) -> Announcer:
        return Announcer(
            speech_backend=speech_backend,
            min_speak_interval=self.config.announcer.min_speak_interval,
            clock=self.clock,
        )

    def build_pipeline(
        self,
        motion: MotionState,
        announcer: Announcer,
        drive_manager: DriveManager,
        sinks: Optional[List[PipelineSink]] = None,
    ) -> DetectionPipeline:
        detection = self.config.detection
        dedup = self.config.dedup

        return DetectionPipeline(
            candidate_filter=CandidateFilter(
                label_sentinel=detection.label_sentinel,
                min_area=detection.min_area,
                max_area=detection.max_area,
                min_aspect_ratio=detection.min_aspect_ratio,
                max_aspect_ratio=detection.max_aspect_ratio,
            ),
            gate=StabilityGate(needed=self.config.stability.needed),
            deduper=Deduper(
                min_confidence=dedup.min_confidence,
                max_spatial_overlap_for_new=dedup.max_spatial_overlap_for_new,
                forget_after=dedup.forget_after,
                clock=self.clock,
            ),
            motion=motion,
            announcer=announcer,
            drive_manager=drive_manager,
            dedup_label=detection.target_label,
            alert_text=detection.alert_text,
            full_stop_text=detection.full_stop_text,
            rolling_stop_text=detection.rolling_stop_text,
            sinks=sinks,
            clock=self.clock,
        )

    def build_detector(self) -> Optional[Callable[[Any], Sequence[Any]]]:
        """
        Resuelve detection.detector ('modulo:callable').

        Returns:
            None si las detecciones llegan ya resueltas por MQTT
        """
        path = self.config.detection.detector
        if path is None:
            return None

        module_name, _, attr = path.partition(':')
        module = importlib.import_module(module_name)
        detector = getattr(module, attr)
        logger.info(
            "🔍 Detector local cargado",
            extra={"component": "builder", "detector": path}
        )
        return detector

    def build_inference_runner(
        self,
        pipeline: DetectionPipeline,
        scheduler: Scheduler,
        detector: Callable[[Any], Sequence[Any]],
    ) -> InferenceRunner:
        return InferenceRunner(
            detector=detector,
            on_result=pipeline.process_frame,
            on_error=pipeline.process_inference_error,
            loop=scheduler,
            clock=self.clock,
        )

    def build(
        self,
        scheduler: Scheduler,
        speech_backend: Callable[[str], None] = log_speech_backend,
        sinks: Optional[List[PipelineSink]] = None,
        store: Optional[DriveStore] = None,
    ) -> Engine:
        """Construye y cablea todos los componentes del engine."""
        if store is None:
            store = self.build_store()
        drive_manager = self.build_drive_manager(store)
        motion = self.build_motion(scheduler)
        announcer = self.build_announcer(speech_backend)
        pipeline = self.build_pipeline(motion, announcer, drive_manager, sinks)

        detector = self.build_detector()
        inference = None
        if detector is not None:
            inference = self.build_inference_runner(pipeline, scheduler, detector)

        logger.info(
            "🔧 Engine construido",
            extra={
                "component": "builder",
                "event": "engine_built",
                "stability_needed": self.config.stability.needed,
                "store": type(store).__name__,
                "local_detector": inference is not None,
            }
        )
        return Engine(
            pipeline=pipeline,
            motion=motion,
            drive_manager=drive_manager,
            announcer=announcer,
            store=store,
            sync=drive_manager.sync,
            inference=inference,
        )
