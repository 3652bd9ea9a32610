from logbook.config import MonitorConfig
from logbook.services.security_monitor import PayloadMonitor


def reasons(detections):
    return [d.reason for d in detections]


def test_normal_feedback_is_not_flagged():
    monitor = PayloadMonitor()
    assert monitor.analyze('The night currency widget is really handy, thanks!', '1.1.1.1', '/api/feedback') == []
    assert len(monitor) == 0


def test_repeated_characters_flagged_as_pattern():
    monitor = PayloadMonitor()
    detections = monitor.analyze('a' * 1200, '1.1.1.1', '/api/feedback')
    assert reasons(detections) == ['repeated_pattern']
    assert detections[0].payload_size == 1200


def test_oversized_payload():
    monitor = PayloadMonitor(MonitorConfig(max_normal_size=100))
    text = ''.join(chr(65 + i % 58) for i in range(150))
    assert reasons(monitor.analyze(text, 'ip', '/api/feedback')) == ['oversized']


def test_script_and_sql_markers():
    monitor = PayloadMonitor()
    assert reasons(monitor.analyze('<SCRIPT>alert(1)</script>', 'ip', 'e')) == ['malformed']
    assert reasons(monitor.analyze('<img src=x onerror = "x">', 'ip', 'e')) == ['malformed']
    assert reasons(monitor.analyze("name'; DROP TABLE users; --", 'ip', 'e')) == ['malformed']


def test_one_malformed_detection_per_payload():
    monitor = PayloadMonitor()
    detections = monitor.analyze('<script>javascript:void(0)</script>', 'ip', 'e')
    assert reasons(detections) == ['malformed']


def test_ring_is_bounded_and_newest_first():
    monitor = PayloadMonitor(MonitorConfig(ring_capacity=3))
    for i in range(5):
        monitor.analyze('<script>', f'10.0.0.{i}', 'e')

    recent = monitor.recent()
    assert len(recent) == 3
    assert [d.ip for d in recent] == ['10.0.0.4', '10.0.0.3', '10.0.0.2']
    assert monitor.recent(limit=1)[0].ip == '10.0.0.4'


def test_detection_serializes():
    monitor = PayloadMonitor()
    detection = monitor.analyze('<script>', '9.9.9.9', '/api/feedback')[0]
    data = detection.to_dict()
    assert data['reason'] == 'malformed'
    assert data['endpoint'] == '/api/feedback'
    assert data['payloadSize'] == 8
    assert 'timestamp' in data


def test_clear():
    monitor = PayloadMonitor()
    monitor.analyze('<script>', 'ip', 'e')
    monitor.clear()
    assert monitor.recent() == []
