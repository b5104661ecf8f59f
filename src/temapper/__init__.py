"""TEMapper: transposable-element insertion-site mapping from short reads.

Most users should use the CLI:

    temapper map --genome-bam genome.bam --te-bam te.bam --outdir results/

"""

from __future__ import annotations

__all__ = ["__version__"]

__version__ = "0.1.0"
