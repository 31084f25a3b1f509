import pytest

from kubetether._cogs.clients.tailing import iter_text, open_log


async def collect(response, **kwargs):
    return [text async for text in iter_text(response, **kwargs)]


async def test_log_is_requested_with_the_follow_options(context, settings, cluster):
    cluster.hold = False
    response = await open_log(context=context, settings=settings,
                              namespace='ns1', pod='pod1', container='main')
    await collect(response)
    assert cluster.paths() == [
        '/api/v1/namespaces/ns1/pods/pod1/log'
        '?container=main&follow=true&timestamps=false&pretty=false&tailLines=100'
    ]


async def test_tail_lines_can_be_disabled(context, settings, cluster):
    cluster.hold = False
    settings.tailing.tail_lines = None
    settings.tailing.timestamps = True
    response = await open_log(context=context, settings=settings,
                              namespace='ns1', pod='pod1', container='main')
    await collect(response)
    assert cluster.paths() == [
        '/api/v1/namespaces/ns1/pods/pod1/log'
        '?container=main&follow=true&timestamps=true&pretty=false'
    ]


@pytest.mark.parametrize('chunks, expected', [
    ([b'hello ', b'world\n'], 'hello world\n'),
    (['привет'.encode('utf-8')[:3], 'привет'.encode('utf-8')[3:]], 'привет'),
    ([b'bad \xff byte'], 'bad � byte'),
    ([b'cut \xd0'], 'cut �'),
])
async def test_chunks_are_decoded_incrementally(context, settings, cluster, chunks, expected):
    cluster.hold = False
    cluster.log_chunks = chunks
    response = await open_log(context=context, settings=settings,
                              namespace='ns1', pod='pod1', container='main')
    texts = await collect(response)
    assert ''.join(texts) == expected
