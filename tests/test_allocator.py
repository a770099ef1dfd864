import threading

import pytest

from pubmed_ingest.allocator import JobAllocator


def test_claim_counts_down_to_zero_then_exhausts():
    allocator = JobAllocator(3)

    assert [allocator.claim() for _ in range(3)] == [2, 1, 0]
    assert allocator.claim() is None
    assert allocator.claim() is None
    assert allocator.remaining == 0


def test_zero_jobs_is_immediately_exhausted():
    assert JobAllocator(0).claim() is None


def test_negative_total_is_rejected():
    with pytest.raises(ValueError):
        JobAllocator(-1)


@pytest.mark.parametrize("total_jobs, workers", [(1, 1), (50, 4), (500, 16)])
def test_concurrent_claims_hand_out_each_index_once(total_jobs, workers):
    allocator = JobAllocator(total_jobs)
    claimed = [[] for _ in range(workers)]
    barrier = threading.Barrier(workers)

    def claim_all(bucket):
        barrier.wait()
        while (index := allocator.claim()) is not None:
            bucket.append(index)

    threads = [
        threading.Thread(target=claim_all, args=(bucket,)) for bucket in claimed
    ]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    every_claim = [index for bucket in claimed for index in bucket]
    assert sorted(every_claim) == list(range(total_jobs))
    for bucket in claimed:
        assert bucket == sorted(bucket, reverse=True)
