"""Component router: dispatch one mention to its processors.

Processors run in ``COMPONENT_ORDER``, so the connection-creating processor
always runs before the processors that enrich the connection it produced.
Anything a processor or the merge engine raises is captured into a failed
``ComponentResult``; nothing escapes ``process_mention``.
"""

import logging
import time

from dishgraph.errors import ComponentProcessingError
from dishgraph.mention import NormalizedMention
from dishgraph.pipeline.attributes import AttributeProcessor
from dishgraph.pipeline.components import default_processors
from dishgraph.pipeline.interfaces import (
    COMPONENT_ORDER,
    ComponentProcessingContext,
    ComponentProcessorInterface,
    ComponentResult,
    OperationOutcome,
)
from dishgraph.pipeline.merge import ConnectionMergeEngine
from dishgraph.pipeline.resolver import BatchResolutionResult

logger = logging.getLogger(__name__)


class ComponentRouter:
    """Routes mentions through the six processors and applies their operations."""

    def __init__(
        self,
        merge_engine: ConnectionMergeEngine,
        attributes: AttributeProcessor | None = None,
        processors: list[ComponentProcessorInterface] | None = None,
        enable_metrics: bool = True,
    ):
        self.merge_engine = merge_engine
        self.attributes = attributes or merge_engine.attributes
        processors = processors if processors is not None else default_processors(self.attributes)
        self.processors = sorted(processors, key=lambda p: COMPONENT_ORDER.index(p.component_type))
        self.enable_metrics = enable_metrics

    def route(self, mention: NormalizedMention, resolved: BatchResolutionResult) -> list[ComponentProcessorInterface]:
        """Return the applicable processors for a mention, in execution order."""
        return [p for p in self.processors if p.should_process(mention, resolved)]

    async def process_mention(self, context: ComponentProcessingContext) -> list[ComponentResult]:
        """Run every applicable processor for the mention in ``context``.

        Connection ids produced by earlier processors are passed on to later
        ones. Once the mention turns out to be a resubmission of an already
        recorded source item, the remaining processors are skipped.

        Returns:
            One ``ComponentResult`` per applicable processor.
        """
        results: list[ComponentResult] = []
        duplicate = False
        for processor in self.route(context.mention, context.resolved):
            if duplicate:
                results.append(
                    ComponentResult(
                        component=processor.component_type,
                        mention_temp_id=context.mention.temp_id,
                        processed=False,
                        skip_reason="mention already processed",
                    )
                )
                continue

            result = await self._run(processor, context)
            results.append(result)
            if result.skip_reason:
                logger.debug("Skipped %s for %s: %s", processor.component_type.value, context.mention.temp_id, result.skip_reason)
            if result.outcome.duplicate_mention:
                duplicate = True
            if result.outcome.connection_ids:
                context = context.with_connections(result.outcome.connection_ids)
        return results

    async def _run(self, processor: ComponentProcessorInterface, context: ComponentProcessingContext) -> ComponentResult:
        start = time.perf_counter()
        try:
            result = await processor.process(context)
            outcome = OperationOutcome()
            for operation in result.operations:
                outcome = outcome.combine(await self.merge_engine.apply(operation, context.clock))
        except Exception as e:
            error = e
            if not isinstance(error, ComponentProcessingError):
                error = ComponentProcessingError(
                    processor.component_type.value, "process", str(e), {"error_type": type(e).__name__}
                )
            logger.warning("Component %s failed for %s: %s", processor.component_type.value, context.mention.temp_id, error)
            return ComponentResult(
                component=processor.component_type,
                mention_temp_id=context.mention.temp_id,
                success=False,
                error=str(error),
            )

        update: dict = {"outcome": outcome}
        if self.enable_metrics:
            update["metrics"] = {
                "operations": len(result.operations),
                "connections_created": len(outcome.connections_created),
                "connections_updated": len(outcome.connections_updated),
                "mentions_created": outcome.mentions_created,
                "entities_updated": len(outcome.entities_updated),
                "processing_time_ms": (time.perf_counter() - start) * 1000,
            }
        return result.model_copy(update=update)
